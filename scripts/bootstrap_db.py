"""
Scripts - Bootstrap Database.

============================================================
RESPONSIBILITY
============================================================
Initializes the database for first-time setup.

- Repairs duplicate verified grants left by older versions
- Creates database schema
- Validates setup

============================================================
USAGE
============================================================
python -m scripts.bootstrap_db

Options:
  --database-url URL   Override DATABASE_URL
  --log-level LEVEL    Logging level (default INFO)

============================================================
"""

import argparse
import logging
import sys

from sqlalchemy import inspect

from scripts import setup_logging
from storage.database import DatabasePersistenceError, initialize_database
from storage.models.verification import VerifiedGrant, VolumeSnapshot


logger = logging.getLogger("bootstrap_db")


REQUIRED_TABLES = (VerifiedGrant.__tablename__, VolumeSnapshot.__tablename__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the verifier database")
    parser.add_argument("--database-url", help="Database URL (default: DATABASE_URL or local SQLite)")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Bootstrap entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        engine = initialize_database(args.database_url)
    except DatabasePersistenceError as e:
        logger.error(f"Database initialization failed: {e}")
        return 1

    existing = set(inspect(engine).get_table_names())
    missing = [table for table in REQUIRED_TABLES if table not in existing]
    engine.dispose()

    if missing:
        logger.error(f"Missing tables after bootstrap: {missing}")
        return 2

    logger.info(f"Database ready: {', '.join(REQUIRED_TABLES)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
