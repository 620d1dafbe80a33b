"""
Authenticated encoding for session identifiers and session payloads.

Values are serialized to JSON, optionally encrypted with a Fernet key derived
from a block key, and signed with HMAC-SHA256 together with the session name
and a timestamp. The result is a cookie-safe string: any modification of it,
or any attempt to replay it under another session name, fails to decode.
"""

import base64
import json
import logging
import secrets
import time
from typing import Any, List, Optional, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sqlsessions.core.exceptions import CodecError, DecodeError, EncodeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 86400 * 30
DEFAULT_MAX_LENGTH = 4096
DEFAULT_KDF_ITERATIONS = 100_000

# Fixed salt: block keys are expected to be random secrets already, the KDF
# only shapes them into a Fernet key.
_BLOCK_KEY_SALT = b"sqlsessions.block-key.v1"
_SEPARATOR = b"|"


def generate_key(length: int = 32) -> bytes:
    """Return a random key suitable for use as a hash key or block key."""
    return secrets.token_bytes(length)


def _get_kdf_iterations(iterations: Optional[int]) -> int:
    """Clamp KDF iterations to sane bounds"""
    if iterations is None:
        return DEFAULT_KDF_ITERATIONS

    if iterations > 1_000_000:
        logger.warning(f"KDF iterations {iterations} exceeds maximum, using 1,000,000")
        return 1_000_000

    if iterations < 10_000:
        logger.warning(
            f"KDF iterations {iterations} below recommended minimum, using {DEFAULT_KDF_ITERATIONS}"
        )
        return DEFAULT_KDF_ITERATIONS

    return iterations


def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _b64decode(data: bytes) -> bytes:
    decoded = base64.urlsafe_b64decode(data + b"=" * (-len(data) % 4))
    # Lenient decoding ignores stray characters and unused trailing bits;
    # only the canonical form of a token is accepted.
    if _b64encode(decoded) != data:
        raise ValueError("non-canonical base64 encoding")
    return decoded


class SecureCodec:
    """
    Encodes and decodes values with HMAC authentication and optional encryption.

    Args:
        hash_key: Secret used to authenticate values. Required.
        block_key: Optional secret used to encrypt values.
        max_age: Maximum age in seconds of a decodable value (0 disables).
        min_age: Minimum age in seconds of a decodable value (0 disables).
        max_length: Maximum length of an encoded value (0 disables).
        kdf_iterations: PBKDF2 iterations used to derive the encryption key.
    """

    def __init__(
        self,
        hash_key: bytes,
        block_key: Optional[bytes] = None,
        *,
        max_age: int = DEFAULT_MAX_AGE,
        min_age: int = 0,
        max_length: int = DEFAULT_MAX_LENGTH,
        kdf_iterations: Optional[int] = None,
    ):
        if not hash_key:
            raise ValueError("hash key must not be empty")

        self._hash_key = bytes(hash_key)
        self.max_age = max_age
        self.min_age = min_age
        self.max_length = max_length
        self.cipher: Optional[Fernet] = None
        if block_key:
            self.cipher = self._create_cipher(bytes(block_key), _get_kdf_iterations(kdf_iterations))

    def __repr__(self) -> str:
        return f"<SecureCodec encrypted={self.cipher is not None} max_age={self.max_age}>"

    @staticmethod
    def _create_cipher(block_key: bytes, iterations: int) -> Fernet:
        """Create a Fernet cipher from the block key."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_BLOCK_KEY_SALT,
            iterations=iterations,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(block_key)))

    def _mac(self, name: str, timestamp: bytes, payload: bytes) -> hmac.HMAC:
        mac = hmac.HMAC(self._hash_key, hashes.SHA256())
        mac.update(name.encode("utf-8") + _SEPARATOR + timestamp + _SEPARATOR + payload)
        return mac

    def encode(self, name: str, value: Any) -> str:
        """
        Serialize, encrypt and sign a value for the given name.

        Raises:
            EncodeError: If the value is not serializable or the result is too long
        """
        try:
            serialized = json.dumps(value, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncodeError(f"value is not serializable: {e}") from e

        if self.cipher is not None:
            serialized = self.cipher.encrypt(serialized)

        payload = _b64encode(serialized)
        timestamp = str(int(time.time())).encode("ascii")
        signature = self._mac(name, timestamp, payload).finalize()
        encoded = _b64encode(_SEPARATOR.join([timestamp, payload, signature])).decode("ascii")

        if self.max_length and len(encoded) > self.max_length:
            raise EncodeError(
                f"encoded value is too long ({len(encoded)} > {self.max_length})"
            )
        return encoded

    def decode(self, name: str, value: str) -> Any:
        """
        Verify, decrypt and deserialize a value encoded for the given name.

        Raises:
            DecodeError: If the value was tampered with, has expired or is malformed
        """
        if self.max_length and len(value) > self.max_length:
            raise DecodeError("encoded value is too long")

        try:
            raw = _b64decode(value.encode("ascii"))
        except ValueError as e:
            raise DecodeError(f"invalid base64 encoding: {e}") from e

        parts = raw.split(_SEPARATOR, 2)
        if len(parts) != 3:
            raise DecodeError("invalid value structure")
        timestamp, payload, signature = parts

        try:
            self._mac(name, timestamp, payload).verify(signature)
        except InvalidSignature as e:
            raise DecodeError("the value is not valid") from e

        try:
            issued = int(timestamp)
        except ValueError as e:
            raise DecodeError("invalid timestamp") from e

        now = int(time.time())
        if self.min_age and issued > now - self.min_age:
            raise DecodeError("timestamp is too new")
        if self.max_age and issued < now - self.max_age:
            raise DecodeError("expired timestamp")

        try:
            serialized = _b64decode(payload)
        except ValueError as e:
            raise DecodeError(f"invalid payload encoding: {e}") from e

        if self.cipher is not None:
            try:
                serialized = self.cipher.decrypt(serialized)
            except InvalidToken as e:
                raise DecodeError("the value could not be decrypted") from e

        try:
            return json.loads(serialized.decode("utf-8"))
        except ValueError as e:
            raise DecodeError(f"value could not be deserialized: {e}") from e


def codecs_from_pairs(*keys: Optional[bytes], **options: Any) -> List[SecureCodec]:
    """
    Build codecs from a flat list of keys taken as (hash_key, block_key) pairs.

    The first pair is the primary one used for encoding; older pairs follow so
    values encoded before a key rotation still decode. A trailing hash key may
    be given without a block key. Keyword options are passed to every codec.
    """
    codecs = []
    for i in range(0, len(keys), 2):
        hash_key = keys[i]
        block_key = keys[i + 1] if i + 1 < len(keys) else None
        codecs.append(SecureCodec(hash_key, block_key, **options))
    return codecs


def encode_multi(name: str, value: Any, *codecs: SecureCodec) -> str:
    """Encode a value with the primary (first) codec."""
    if not codecs:
        raise EncodeError("no codecs were provided")
    return codecs[0].encode(name, value)


def decode_multi(name: str, value: str, *codecs: SecureCodec) -> Any:
    """
    Decode a value with the first codec that accepts it.

    Raises:
        DecodeError: Carrying every codec's error when none of them succeeds
    """
    if not codecs:
        raise DecodeError("no codecs were provided")

    errors: List[CodecError] = []
    for codec in codecs:
        try:
            return codec.decode(name, value)
        except DecodeError as e:
            errors.append(e)

    raise DecodeError(_join_errors(errors), errors)


def _join_errors(errors: Sequence[CodecError]) -> str:
    if len(errors) == 1:
        return str(errors[0])
    return "; ".join(f"codec {i}: {e}" for i, e in enumerate(errors))
