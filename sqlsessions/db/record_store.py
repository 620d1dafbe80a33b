"""
Record store adapters for session payloads.

A record store keeps one row per session: the session identifier, the
encoded session values and an expiry. Expired rows are never returned, so to
readers an expired record is the same as a missing one.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Lock
import logging
from typing import Dict, Optional, Protocol, runtime_checkable

from sqlalchemy import Table, delete, insert, inspect, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sqlsessions.core.exceptions import StorageError
from sqlsessions.db.base import create_metadata
from sqlsessions.db.models.session_store import session_table
from sqlsessions.db.session import create_session_factory, get_db_sync

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordStore(Protocol):
    """
    Backing store interface used by the session store.

    Table names reaching an adapter have already been validated. Every
    operation raises ``StorageError`` on failure.
    """

    def ensure_schema(self, table: str) -> None: ...

    def put(self, table: str, session_id: str, payload: str, ttl_seconds: int) -> None: ...

    def get(self, table: str, session_id: str) -> Optional[str]: ...

    def delete(self, table: str, session_id: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyRecordStore:
    """Record store on any database SQLAlchemy can reach."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._factory = create_session_factory(engine)
        self._metadata = create_metadata()
        self._tables: Dict[str, Table] = {}
        self._tables_lock = Lock()

    def _table(self, name: str) -> Table:
        """Return the table definition for ``name``, defining it once."""
        table = self._tables.get(name)
        if table is not None:
            return table

        with self._tables_lock:
            # Double-check after acquiring lock
            table = self._tables.get(name)
            if table is None:
                table = session_table(name, self._metadata)
                self._tables[name] = table
            return table

    def ensure_schema(self, table: str) -> None:
        """Create the session table if it does not exist yet."""
        try:
            self._table(table).create(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create session table {table}: {e}")
            raise StorageError(e) from e
        logger.debug(f"Session table {table} is ready")

    def put(self, table: str, session_id: str, payload: str, ttl_seconds: int) -> None:
        """
        Insert or replace the record for ``session_id``.

        Args:
            table: Session table name
            session_id: Session identifier
            payload: Encoded session values
            ttl_seconds: Lifetime of the record, must be positive

        Raises:
            StorageError: If the TTL is not positive or the write fails
        """
        if ttl_seconds <= 0:
            raise StorageError(f"ttl must be positive, got {ttl_seconds}")

        t = self._table(table)
        values = {"data": payload, "expires_at": _utcnow() + timedelta(seconds=ttl_seconds)}
        upsert = update(t).where(t.c.id == session_id).values(**values)

        with get_db_sync(self._factory) as db:
            try:
                # Update first, insert when there was nothing to update
                result = db.execute(upsert)
                if result.rowcount == 0:
                    try:
                        db.execute(insert(t).values(id=session_id, **values))
                    except IntegrityError:
                        # Another writer inserted the row between our UPDATE
                        # and INSERT. Retry the update.
                        db.rollback()
                        logger.debug(f"Insert raced for session {session_id}, retrying update")
                        result = db.execute(upsert)
                        if result.rowcount == 0:
                            raise StorageError(f"failed to insert or update session {session_id}")
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to store session {session_id} in {table}: {e}")
                raise StorageError(e) from e

    def get(self, table: str, session_id: str) -> Optional[str]:
        """Return the stored payload, or None if missing or expired."""
        t = self._table(table)
        query = select(t.c.data).where(t.c.id == session_id, t.c.expires_at > _utcnow())
        with get_db_sync(self._factory) as db:
            try:
                return db.execute(query).scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Failed to load session {session_id} from {table}: {e}")
                raise StorageError(e) from e

    def delete(self, table: str, session_id: str) -> None:
        """Remove the record for ``session_id``. Missing records are ignored."""
        t = self._table(table)
        with get_db_sync(self._factory) as db:
            try:
                db.execute(delete(t).where(t.c.id == session_id))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to delete session {session_id} from {table}: {e}")
                raise StorageError(e) from e

    def purge_expired(self, table: str) -> int:
        """
        Delete expired records and return how many were removed.

        A table that does not exist yet holds no records, so nothing is
        removed and no table is created.
        """
        try:
            exists = inspect(self.engine).has_table(table)
        except SQLAlchemyError as e:
            logger.error(f"Failed to inspect session table {table}: {e}")
            raise StorageError(e) from e
        if not exists:
            logger.info(f"Session table {table} does not exist, nothing to purge")
            return 0

        t = self._table(table)
        with get_db_sync(self._factory) as db:
            try:
                removed = db.execute(delete(t).where(t.c.expires_at <= _utcnow())).rowcount
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to purge expired sessions from {table}: {e}")
                raise StorageError(e) from e
        logger.info(f"Purged {removed} expired sessions from {table}")
        return removed
