"""Database layer - engine, base classes, and types."""

from retail_kernel.db.base import UUID, Base, JSONDocument, UUIDString
from retail_kernel.db.engine import (
    atomic,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "atomic",
    "create_tables",
    "Base",
    "JSONDocument",
    "UUIDString",
    "UUID",
]
