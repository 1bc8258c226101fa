"""Database layer - engine, base classes, types, and immutability."""

from pharmacy_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from pharmacy_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from pharmacy_kernel.db.types import money_column, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "money_column",
    "round_money",
]
