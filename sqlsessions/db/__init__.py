"""Backing store access for session records"""

from sqlsessions.db.record_store import RecordStore, SQLAlchemyRecordStore
from sqlsessions.db.session import create_session_engine

__all__ = ["RecordStore", "SQLAlchemyRecordStore", "create_session_engine"]
