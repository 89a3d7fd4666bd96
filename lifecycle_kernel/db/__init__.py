"""Database layer - engine, base classes, column types, and append-only guards."""

from lifecycle_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from lifecycle_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    mark_read_only,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "mark_read_only",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
