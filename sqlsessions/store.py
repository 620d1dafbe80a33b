"""
SQL-backed HTTP session store.

The session cookie carries only an authenticated, optionally encrypted session
identifier. Session values live in a database table keyed by that identifier,
encoded with the same codecs so stored data is tamper-evident too.

One store is meant to be shared by every request the process serves. The
public ``options`` and ``codecs`` attributes are not guarded: change them
before serving traffic, or under external synchronization.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

from sqlalchemy.engine import Engine
from starlette.responses import Response

from sqlsessions.core.exceptions import (
    CreateError,
    DecodeError,
    EncodeError,
    LoadError,
    SaveError,
    StorageError,
)
from sqlsessions.core.utils.encryption import (
    SecureCodec,
    codecs_from_pairs,
    decode_multi,
    encode_multi,
)
from sqlsessions.core.utils.identifiers import new_session_id
from sqlsessions.db.models.session_store import validate_table_name
from sqlsessions.db.record_store import RecordStore, SQLAlchemyRecordStore
from sqlsessions.sessions import Options, Session, get_registry, set_session_cookie

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Session store persisting values in a database table.

    Args:
        connection: SQLAlchemy engine, or any ``RecordStore`` implementation
        table: Name of the session table, letters, digits and underscores only.
            The table is created if it does not exist.
        *key_pairs: Flat list of (hash_key, block_key) pairs, newest first.
            The first pair encodes new values, all pairs are tried when
            decoding so keys can be rotated.
        kdf_iterations: Optional PBKDF2 iterations for block key derivation

    Raises:
        CreateError: If the table name is invalid, no key was given or the
            table cannot be created
    """

    def __init__(
        self,
        connection: Union[Engine, RecordStore],
        table: str,
        *key_pairs: Optional[bytes],
        kdf_iterations: Optional[int] = None,
    ):
        try:
            validate_table_name(table)
        except ValueError as e:
            raise CreateError(e) from e
        if not key_pairs or not key_pairs[0]:
            raise CreateError("at least one hash key is required")
        try:
            self.codecs: List[SecureCodec] = codecs_from_pairs(
                *key_pairs, kdf_iterations=kdf_iterations
            )
        except ValueError as e:
            raise CreateError(e) from e

        if isinstance(connection, Engine):
            self._records: RecordStore = SQLAlchemyRecordStore(connection)
        else:
            self._records = connection
        self._table = table

        try:
            self._records.ensure_schema(table)
        except StorageError as e:
            raise CreateError(e) from e

        self.options = Options(path="/", max_age=86400 * 30)

        logger.info(f"Session store ready on table {table} with {len(self.codecs)} codec(s)")

    @property
    def table(self) -> str:
        return self._table

    @property
    def records(self) -> RecordStore:
        return self._records

    def max_age(self, age: int) -> None:
        """Set the default max-age of new sessions and of every codec."""
        self.options.max_age = age
        for codec in self.codecs:
            codec.max_age = age

    def max_length(self, length: int) -> None:
        """Set the maximum encoded length of every codec. Zero disables the limit."""
        for codec in self.codecs:
            codec.max_length = length

    def get(self, request: Any, name: str) -> Session:
        """
        Return the named session for ``request``.

        Lookups are memoized in the request's session registry, so repeated
        calls return the same session. Falls back to ``new`` for requests that
        cannot carry a registry.

        Raises:
            LoadError: See ``new``
        """
        registry = get_registry(request)
        if registry is None:
            return self.new(request, name)
        return registry.get(self, name)

    def new(self, request: Any, name: str) -> Session:
        """
        Build the named session, loading it if the request carries its cookie.

        Raises:
            LoadError: If the cookie is invalid or the stored record is
                missing, expired or corrupt. ``error.session`` is a fresh,
                empty session the caller can continue with.
        """
        session = Session(self, name)
        session.options = self.options.copy()
        session.is_new = True

        cookie = request.cookies.get(name)
        if cookie is None:
            return session

        try:
            session_id = decode_multi(name, cookie, *self.codecs)
        except DecodeError as e:
            raise LoadError(session, e) from e
        if not isinstance(session_id, str) or not session_id:
            raise LoadError(session, "cookie does not hold a session id")

        try:
            payload = self._records.get(self._table, session_id)
        except StorageError as e:
            raise LoadError(session, e) from e
        if payload is None:
            raise LoadError(session, f"no stored record for session {session_id}")

        try:
            values = decode_multi(name, payload, *self.codecs)
        except DecodeError as e:
            raise LoadError(session, e) from e
        if not isinstance(values, dict):
            raise LoadError(session, "stored session data is not a mapping")

        session.id = session_id
        session.values = values
        session.is_new = False
        logger.debug(f"Loaded session {session_id} for {name}")
        return session

    def save(self, request: Any, response: Response, session: Session) -> None:
        """
        Persist session values and write the session cookie on ``response``.

        A session whose max-age is zero or less is deleted from the table and
        its cookie cleared instead. Must be called before the response is sent.

        Raises:
            SaveError: If encoding or storage fails. When only the final
                cookie encoding fails the record has already been written.
        """
        if session.options.max_age <= 0:
            if session.id:
                try:
                    self._records.delete(self._table, session.id)
                except StorageError as e:
                    raise SaveError(e) from e
                logger.debug(f"Deleted session {session.id}")
            set_session_cookie(response, session.name, "", session.options)
            return

        if not session.id:
            session.id = new_session_id()

        try:
            payload = encode_multi(session.name, session.values, *self.codecs)
        except EncodeError as e:
            raise SaveError(e) from e

        try:
            self._records.put(self._table, session.id, payload, session.options.max_age)
        except StorageError as e:
            raise SaveError(e) from e

        try:
            encoded_id = encode_multi(session.name, session.id, *self.codecs)
        except EncodeError as e:
            raise SaveError(e) from e

        set_session_cookie(response, session.name, encoded_id, session.options)
        logger.debug(f"Saved session {session.id}")
