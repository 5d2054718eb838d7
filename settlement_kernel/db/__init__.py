"""Database layer: declarative base, engine/session management, listeners."""

from settlement_kernel.db.base import Base, TokenAmount, TrackedBase, UUIDString
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from settlement_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)

__all__ = [
    "Base",
    "TokenAmount",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "register_immutability_listeners",
    "reset_engine",
    "session_scope",
    "unregister_immutability_listeners",
]
