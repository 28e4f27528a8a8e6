"""
Module: approval_kernel.db.base
Responsibility: Declarative base for the approval audit tables.
Architecture position: Kernel > DB.  Lowest-level import target of the
    persistence layer; MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - Surrogate keys are uuid4 values stored as String(36) so the same
      schema runs on SQLite (tests, demo) and PostgreSQL.
    - ``datetime`` columns are always timezone-aware.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return str(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return PyUUID(value) if value is not None else None


class Base(DeclarativeBase):
    """Declarative base; every table gets a uuid4 ``id`` primary key."""

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )
