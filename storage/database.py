"""
Storage - Engine and Sessions.

============================================================
RESPONSIBILITY
============================================================
One place that knows where the database lives.

DATABASE_URL (read from the environment or a .env file)
selects any SQLAlchemy URL. Without it the verifier writes a
local SQLite file under ./data so a fresh checkout runs.

Transactions are explicit: repositories only flush, and
session_scope decides commit or rollback.

============================================================
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storage.models import Base


load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_SQLITE_PATH = Path("data") / "verifier.sqlite"


class DatabasePersistenceError(Exception):
    """A transaction could not be committed."""


class DatabaseInitializationError(DatabasePersistenceError):
    """The schema could not be created."""


def get_database_url() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return url

    DEFAULT_SQLITE_PATH.parent.mkdir(parents=True, exist_ok=True)
    url = f"sqlite:///{DEFAULT_SQLITE_PATH}"
    logger.info(f"DATABASE_URL not set, falling back to {url}")
    return url


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_database_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build an engine for `url`, or for get_database_url().

    SQLite connections get foreign key enforcement switched on,
    which the driver leaves off by default.
    """
    url = url or get_database_url()
    # Credentials sit before the '@'
    logger.info(f"Opening database {url.rsplit('@', 1)[-1]}")

    engine = create_engine(url, echo=echo)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # Rows stay readable after commit; callers hand them across awaits
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Run one unit of work.

        with session_scope(factory) as session:
            GrantRepository(session).save_grant(...)

    Commits on a clean exit. A SQLAlchemy failure rolls back and
    surfaces as DatabasePersistenceError; anything else rolls
    back and propagates unchanged.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Rolled back failed transaction: {e}")
        raise DatabasePersistenceError(f"Transaction failed: {e}") from e
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error(f"Schema creation failed: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}") from e
    logger.info(f"Schema ready ({', '.join(sorted(Base.metadata.tables))})")


def initialize_database(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Engine plus schema, ready for use.

    Existing grant rows are repaired first; maintenance problems
    are logged by run_startup_maintenance and never block startup.
    """
    from storage.maintenance import run_startup_maintenance

    engine = create_database_engine(url, echo=echo)
    run_startup_maintenance(engine)
    create_all_tables(engine)
    return engine


__all__ = [
    "DEFAULT_SQLITE_PATH",
    "DatabasePersistenceError",
    "DatabaseInitializationError",
    "get_database_url",
    "create_database_engine",
    "create_session_factory",
    "session_scope",
    "create_all_tables",
    "initialize_database",
]
