"""Database layer - engine, base classes and session scope."""

from accrual_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from accrual_kernel.db.engine import (
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
    "TrackedBase",
    "UUIDString",
    "UUID",
]
