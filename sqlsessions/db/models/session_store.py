import re

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text

# Table names are interpolated into DDL and queries
TABLE_NAME_PATTERN = re.compile(r"[A-Za-z0-9_]+")


def validate_table_name(name: str) -> str:
    """
    Return ``name`` if it is a usable session table name.

    Raises:
        ValueError: If ``name`` holds anything but letters, digits and
            underscores
    """
    if not isinstance(name, str) or not TABLE_NAME_PATTERN.fullmatch(name):
        raise ValueError(f"invalid table name {name!r}")
    return name


def session_table(name: str, metadata: MetaData) -> Table:
    """
    Define the session record table called ``name`` in ``metadata``.

    ``id`` holds the session identifier, ``data`` the encoded session values
    and ``expires_at`` the instant after which the record counts as absent.
    """
    return Table(
        name,
        metadata,
        Column("id", String(36), primary_key=True),
        Column("data", Text, nullable=False),
        Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
    )
