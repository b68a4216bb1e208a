"""Database layer - engine, base classes, types, and immutability listeners."""

from procurement_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.db.types import Money, Sequence, round_money

__all__ = [
    "init_engine_from_url",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Money",
    "Sequence",
    "round_money",
]
