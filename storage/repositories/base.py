"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for the grant and snapshot repositories:

- Session injection (the caller owns the transaction, see
  storage.database.session_scope)
- Flushing inserts so generated ids are available at once
- Mapping SQLAlchemy errors to repository exceptions

============================================================
"""

import logging
from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
)


ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(ABC, Generic[ModelT]):
    """
    Repository over one ORM model.

    Subclasses pass their model and a name used in log records
    and exception messages:

        class VolumeSnapshotRepository(BaseRepository[VolumeSnapshot]):
            def __init__(self, session):
                super().__init__(session, VolumeSnapshot, "VolumeSnapshotRepository")
    """

    def __init__(self, session: Session, model_class: Type[ModelT], repository_name: str) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def repository_name(self) -> str:
        return self._repository_name

    # =========================================================
    # ERROR MAPPING
    # =========================================================

    def _handle_db_error(
        self,
        error: SQLAlchemyError,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log and re-raise a SQLAlchemy error as a repository exception.

        A unique violation becomes DuplicateRecordError when the
        context names the key ("field") and its "value".
        """
        context = context or {}
        self._logger.error(f"{operation} failed {context}: {error}", exc_info=True)

        if isinstance(error, OperationalError):
            raise ConnectionError(self._repository_name, operation, str(error)) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            if "unique" in str(error).lower() and "field" in context:
                raise DuplicateRecordError(
                    self._repository_name, operation, context["field"], context.get("value"),
                ) from error
            raise IntegrityError(self._repository_name, operation, str(error)) from error

        raise QueryError(self._repository_name, operation, str(error)) from error

    # =========================================================
    # WRITES
    # =========================================================

    def _add(self, entity: ModelT) -> ModelT:
        try:
            self._session.add(entity)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add", {"entity": repr(entity)})
            raise
        self._logger.debug(f"Added {entity!r}")
        return entity

    def _add_all(self, entities: Sequence[ModelT]) -> List[ModelT]:
        try:
            self._session.add_all(entities)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add_all", {"count": len(entities)})
            raise
        self._logger.debug(f"Added {len(entities)} {self._model_class.__name__} rows")
        return list(entities)

    # =========================================================
    # READS
    # =========================================================

    def _execute_query(self, stmt: Any) -> List[ModelT]:
        """All rows of a select statement."""
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")
            raise

    def _execute_scalar(self, stmt: Any) -> Optional[ModelT]:
        """First row of a select statement, or None."""
        try:
            return self._session.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")
            raise
