"""Database layer - engine, base classes, persistence guards."""

from payhub_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from payhub_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from payhub_kernel.db.guards import persistence_guard

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "persistence_guard",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
