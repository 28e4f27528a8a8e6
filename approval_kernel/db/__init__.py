"""
Module: approval_kernel.db
Responsibility: Declarative base and engine/session management for the
    audit event store.
Architecture position: Kernel > DB.  MUST NOT import from services/ or
    outer layers.
"""

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
