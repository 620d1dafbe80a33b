"""
Demo application: a visit counter kept in a server-side session.

Run with ``python -m sqlsessions.run`` or
``uvicorn sqlsessions.main:create_app --factory``.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response

from sqlsessions.core.config import settings
from sqlsessions.core.exceptions import LoadError, SaveError
from sqlsessions.core.utils.encryption import generate_key
from sqlsessions.core.utils.logging_config import (
    get_correlation_id,
    init_application_logging,
    set_correlation_id,
)
from sqlsessions.db.session import create_session_engine
from sqlsessions.sessions import Session
from sqlsessions.store import SessionStore

logger = logging.getLogger("sqlsessions.main")


def build_store() -> SessionStore:
    """Create the session store described by the application settings"""
    keys = settings.key_pairs()
    if not keys:
        logger.warning(
            "No secret keys configured, using an ephemeral key. "
            "Sessions will not survive a restart."
        )
        keys = [generate_key()]

    engine = create_session_engine(settings.database_url)
    store = SessionStore(
        engine, settings.session_table, *keys, kdf_iterations=settings.kdf_iterations
    )
    store.max_age(settings.session_max_age)
    store.options.secure = settings.cookie_secure
    store.options.http_only = settings.cookie_http_only
    return store


def create_app(store: Optional[SessionStore] = None, session_name: Optional[str] = None) -> FastAPI:
    """Application factory. Builds the store from settings when none is given."""
    if store is None:
        init_application_logging()
        store = build_store()
    name = session_name or settings.session_name

    app = FastAPI(
        title=settings.app_name,
        description="Visit counter backed by server-side sessions",
    )
    app.state.session_store = store

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Any:
        set_correlation_id(request.headers.get("X-Request-ID") or str(uuid.uuid4()))
        response = await call_next(request)
        response.headers["X-Request-ID"] = get_correlation_id()
        return response

    def load_session(request: Request) -> Session:
        try:
            return store.get(request, name)
        except LoadError as e:
            # The session might have expired, the cookie was malformed, or
            # there was a database issue. Carry on with a blank session.
            logger.warning(f"Starting a fresh session: {e}")
            return e.session

    def save_session(request: Request, response: Response, session: Session) -> None:
        try:
            session.save(request, response)
        except SaveError as e:
            logger.error(f"Failed to save session: {e}")
            raise HTTPException(status_code=500, detail="Could not save session") from e

    @app.get("/")
    def visit(request: Request, response: Response) -> Dict[str, Any]:
        session = load_session(request)

        counter = session.values.get("counter")
        if not isinstance(counter, int):
            counter = 0
        session.values["counter"] = counter + 1

        save_session(request, response, session)
        return {
            "message": f"I have seen you {counter + 1} time(s)",
            "count": counter + 1,
            "new_session": session.is_new,
        }

    @app.post("/logout")
    def logout(request: Request, response: Response) -> Dict[str, str]:
        session = load_session(request)
        session.options.max_age = -1
        save_session(request, response, session)
        return {"message": "Session cleared"}

    return app
