"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
SQLAlchemy failures never leave a repository unwrapped. Each
one is re-raised as a RepositoryException subclass naming the
repository and operation, e.g.

    [VolumeSnapshotRepository] add_all: Query failed ...

The identity conflict raised by the grant repository is a
domain rule, not a database failure, but shares the base so
callers can catch repository problems in one place.

============================================================
"""

from typing import Any, Dict, List, Optional


class RepositoryException(Exception):
    """Base for every error raised by a repository."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(f"[{repository_name}] {operation}: {message}")


class DuplicateRecordError(RepositoryException):
    """A unique constraint rejected an insert."""

    def __init__(self, repository_name: str, operation: str, key: str, value: Any) -> None:
        super().__init__(
            message=f"Record with {key}={value} already exists",
            repository_name=repository_name,
            operation=operation,
            details={"key": key, "value": str(value)},
        )
        self.key = key
        self.value = value


class IntegrityError(RepositoryException):
    """Any other constraint violation (NOT NULL, foreign key, check)."""

    def __init__(self, repository_name: str, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Constraint violated: {reason}",
            repository_name=repository_name,
            operation=operation,
        )


class ConnectionError(RepositoryException):
    """The database could not be reached or the SQLite file is locked."""

    def __init__(self, repository_name: str, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Database unavailable: {reason}",
            repository_name=repository_name,
            operation=operation,
        )


class QueryError(RepositoryException):
    """A statement failed for any other reason."""

    def __init__(self, repository_name: str, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Query failed: {reason}",
            repository_name=repository_name,
            operation=operation,
        )


class VerifiedGrantConflictError(RepositoryException):
    """
    A save would overwrite a populated grant identity.

    `conflicts` lists the identity fields whose stored value
    differs from the one supplied.
    """

    def __init__(self, repository_name: str, conflicts: List[str]) -> None:
        super().__init__(
            message=f"Verified grant identity conflict: {', '.join(conflicts)}",
            repository_name=repository_name,
            operation="save_grant",
            details={"conflicts": list(conflicts)},
        )
        self.conflicts = list(conflicts)
