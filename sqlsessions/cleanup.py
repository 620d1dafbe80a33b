#!/usr/bin/env python3
"""
Remove expired session records.

SQL databases do not expire rows on their own, so expired sessions stay in the
table (invisible to readers) until this script deletes them. Run it
periodically, e.g. from cron.
"""

import argparse
import logging
import sys

from sqlsessions.core.config import settings
from sqlsessions.core.exceptions import StorageError
from sqlsessions.core.utils.logging_config import init_application_logging
from sqlsessions.db.models.session_store import validate_table_name
from sqlsessions.db.record_store import SQLAlchemyRecordStore
from sqlsessions.db.session import create_session_engine

logger = logging.getLogger("sqlsessions.cleanup")


def purge(database_url: str, table: str) -> int:
    """
    Delete expired records from ``table`` and return how many were removed.

    Raises:
        ValueError: If ``table`` is not a valid session table name
        StorageError: If the database cannot be reached
    """
    validate_table_name(table)
    engine = create_session_engine(database_url)
    try:
        return SQLAlchemyRecordStore(engine).purge_expired(table)
    finally:
        engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--table", default=settings.session_table)
    args = parser.parse_args(argv)

    init_application_logging()

    try:
        removed = purge(args.database_url, args.table)
    except ValueError as e:
        logger.error(f"Cleanup refused: {e}")
        return 2
    except StorageError as e:
        logger.error(f"Cleanup failed: {e}")
        return 1

    print(f"Removed {removed} expired session(s) from {args.table}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
