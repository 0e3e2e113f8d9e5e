"""Database layer - engine, base classes and column types."""

from settlement_kernel.db.base import UUID, Address, Base, TimestampedBase, UUIDString
from settlement_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "Address",
    "UUID",
]
