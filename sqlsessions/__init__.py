"""sqlsessions - SQL-backed server-side HTTP sessions with authenticated cookies.

Example::

    from sqlsessions import SessionStore, LoadError
    from sqlsessions.db import create_session_engine

    store = SessionStore(create_session_engine("sqlite:///./sessions.db"), "sessions", b"hash-key")
"""

from sqlsessions.core.exceptions import (
    CreateError,
    DecodeError,
    EncodeError,
    LoadError,
    SaveError,
    StorageError,
)
from sqlsessions.sessions import Options, Session, SessionRegistry, get_registry, save_all
from sqlsessions.store import SessionStore

__all__ = [
    "CreateError",
    "DecodeError",
    "EncodeError",
    "LoadError",
    "Options",
    "SaveError",
    "Session",
    "SessionRegistry",
    "SessionStore",
    "StorageError",
    "get_registry",
    "save_all",
]
