from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def get_connect_args(url: str) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if url.startswith("sqlite"):
        # The store is shared across request threads
        return {"check_same_thread": False}
    return {}


def create_session_engine(url: str, **kwargs: Any) -> Engine:
    """Create the engine used as the session store's backing connection"""
    return create_engine(url, connect_args=get_connect_args(url), **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_sync(factory: sessionmaker) -> Generator[Session, None, None]:
    """Get a synchronous DB session with proper resource management"""
    db = factory()
    try:
        yield db
    finally:
        db.close()
