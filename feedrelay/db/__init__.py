"""PostgreSQL persistence for subscriptions."""

from .connection import close_db, ensure_schema, get_connection, init_db
from .store import SessionStore

__all__ = [
    "close_db",
    "ensure_schema",
    "get_connection",
    "init_db",
    "SessionStore",
]
