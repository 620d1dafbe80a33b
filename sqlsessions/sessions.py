"""Session entities, cookie options and the per-request session registry."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, NamedTuple, Optional

from starlette.responses import Response

from sqlsessions.core.exceptions import LoadError

if TYPE_CHECKING:
    from sqlsessions.store import SessionStore

DEFAULT_MAX_AGE = 86400 * 30

# Expires value sent along with Max-Age=-1 for clients that ignore Max-Age
_EXPIRED = datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)

_REGISTRY_ATTR = "sqlsessions_registry"


@dataclass
class Options:
    """Cookie attributes and lifetime of a session.

    ``max_age`` is in seconds. A value of zero or less deletes the session on
    the next save.
    """

    path: str = "/"
    domain: Optional[str] = None
    max_age: int = DEFAULT_MAX_AGE
    secure: bool = False
    http_only: bool = True
    same_site: Optional[str] = "lax"

    def copy(self) -> Options:
        return dataclasses.replace(self)


class Session:
    """Server-side session state for a single request.

    Attributes:
        id: Session identifier, empty until the session is saved or loaded.
        values: Session values. Must be JSON serializable to be saved.
        options: Cookie options, independent from the store defaults.
        is_new: ``True`` until the session is loaded from a stored record.
    """

    def __init__(self, store: SessionStore, name: str) -> None:
        self._store = store
        self._name = name
        self.id = ""
        self.values: Dict[str, Any] = {}
        self.options = Options()
        self.is_new = True

    def __repr__(self) -> str:
        return f"<Session name={self._name!r} is_new={self.is_new}>"

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> SessionStore:
        return self._store

    def save(self, request: Any, response: Response) -> None:
        """Persist the session through its store. Call before the response is sent."""
        self._store.save(request, response, self)


def set_session_cookie(response: Response, name: str, value: str, options: Options) -> None:
    """Write the session cookie described by ``options`` on ``response``."""
    if options.max_age > 0:
        max_age = options.max_age
        expires = datetime.now(timezone.utc) + timedelta(seconds=max_age)
    else:
        max_age = -1
        expires = _EXPIRED

    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        expires=expires,
        path=options.path,
        domain=options.domain,
        secure=options.secure,
        httponly=options.http_only,
        samesite=options.same_site,
    )


class _SessionInfo(NamedTuple):
    session: Session
    error: Optional[LoadError]


class SessionRegistry:
    """Resolves each session name at most once per request."""

    def __init__(self, request: Any) -> None:
        self.request = request
        self._sessions: Dict[str, _SessionInfo] = {}

    def get(self, store: SessionStore, name: str) -> Session:
        """
        Return the named session, loading it through ``store`` on first use.

        A load failure is remembered and raised again on later lookups, each
        time carrying the same fresh session.
        """
        info = self._sessions.get(name)
        if info is None:
            try:
                info = _SessionInfo(store.new(self.request, name), None)
            except LoadError as e:
                info = _SessionInfo(e.session, e)
            self._sessions[name] = info

        if info.error is not None:
            raise LoadError(info.session, info.error.cause) from info.error
        return info.session

    def save(self, response: Response) -> None:
        """Save every session resolved through this registry."""
        for info in self._sessions.values():
            info.session.save(self.request, response)


def get_registry(request: Any) -> Optional[SessionRegistry]:
    """
    Return the registry attached to ``request``, creating it on first use.

    The registry lives in ``request.state`` so every request object built on
    the same ASGI scope shares it. Requests without state get no registry.
    """
    state = getattr(request, "state", None)
    if state is None:
        return None

    registry = getattr(state, _REGISTRY_ATTR, None)
    if registry is None:
        registry = SessionRegistry(request)
        setattr(state, _REGISTRY_ATTR, registry)
    return registry


def save_all(request: Any, response: Response) -> None:
    """Save every session loaded during ``request``."""
    registry = get_registry(request)
    if registry is not None:
        registry.save(response)
