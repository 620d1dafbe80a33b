"""Database models"""

from sqlsessions.db.models.session_store import session_table, validate_table_name

__all__ = ["session_table", "validate_table_name"]
