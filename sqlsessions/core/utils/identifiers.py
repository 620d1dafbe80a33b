"""Session identifier generation."""

import uuid


def new_session_id() -> str:
    """
    Return a new time-based session identifier.

    Version 1 UUIDs embed the current timestamp and a random clock sequence,
    so identifiers minted concurrently in separate processes do not collide.
    """
    return str(uuid.uuid1())
