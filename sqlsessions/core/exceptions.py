"""
Exception types raised by the session store.

Store-level errors wrap the underlying failure (a storage exception, a codec
error or a plain message) so callers can log one uniform message while still
reaching the original error through ``cause`` or ``__cause__``.
"""

from typing import Any, Optional, Sequence


class SessionStoreError(Exception):
    """Base class for errors crossing the session store boundary"""

    action = "complete session operation"

    def __init__(self, cause: Any):
        self.cause = cause
        super().__init__(f"Could not {self.action}. Error: {cause}")


class CreateError(SessionStoreError):
    """Raised when the store cannot be constructed or its table provisioned"""

    action = "create sessions table"


class LoadError(SessionStoreError):
    """
    Raised when an existing session could not be loaded.

    The fresh, empty session built for the request is attached as ``session``
    so callers can log the error and carry on with a blank session.
    """

    action = "load session data"

    def __init__(self, session: Any, cause: Any):
        self.session = session
        super().__init__(cause)


class SaveError(SessionStoreError):
    """Raised when session data could not be durably persisted"""

    action = "save session data"


class StorageError(SessionStoreError):
    """Raised by record store adapters for any backing store failure"""

    action = "access session storage"


class CodecError(Exception):
    """Base class for authenticated codec failures"""
    pass


class EncodeError(CodecError):
    """Raised when a value cannot be serialized, encrypted or signed"""
    pass


class DecodeError(CodecError):
    """Raised when a value fails validation, decryption or deserialization"""

    def __init__(self, message: str, errors: Optional[Sequence[CodecError]] = None):
        self.errors = list(errors or [])
        super().__init__(message)
