"""Database layer - engine and base classes."""

from timebox_kernel.db.base import Base, TimestampedBase
from timebox_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "TimestampedBase",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
