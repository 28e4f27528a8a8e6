"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident approval audit chain.
Architecture position: Kernel > Models.  May import from db/base.py, domain
    types and exceptions only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity per expense: hash = H(expense_id | seq |
      event_type | payload_hash | prev_hash).  Validated by
      ``SqlAlchemyAuditSink.verify_chain``.
    - (expense_id, seq) is unique; seq is the state machine's per-expense
      event sequence.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError when the same (expense_id, seq) is written twice.

Audit relevance:
    Every approval state transition (level activated, response recorded,
    level resolved, overall resolved, escalated, stalled, delegated) is one
    row.  The chain makes retroactive tampering detectable.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.domain.approval import AuditEvent, AuditEventType
from approval_kernel.exceptions import ImmutabilityViolationError


class ApprovalAuditEventModel(Base):
    """
    One approval audit event with its chain hashes.

    Guarantees:
        - prev_hash is None only for an expense's genesis event.
        - payload is stored exactly as emitted by the state machine.

    Non-goals:
        - This model does NOT compute hashes; the audit sink does.
    """

    __tablename__ = "approval_audit_events"

    __table_args__ = (
        UniqueConstraint("expense_id", "seq", name="uq_approval_audit_expense_seq"),
        Index("idx_approval_audit_expense", "expense_id"),
        Index("idx_approval_audit_type", "event_type"),
        Index("idx_approval_audit_occurred", "occurred_at"),
    )

    expense_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Per-expense sequence, starts at 1
    seq: Mapped[int] = mapped_column(nullable=False)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # hash = H(expense_id + seq + event_type + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalAuditEvent {self.expense_id}#{self.seq} {self.event_type}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> AuditEvent:
        """Convert ORM model to the frozen domain event."""
        occurred_at = self.occurred_at
        if occurred_at.tzinfo is None:
            # SQLite drops the offset; stored values are UTC
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        return AuditEvent(
            expense_id=self.expense_id,
            sequence=self.seq,
            event_type=AuditEventType(self.event_type),
            occurred_at=occurred_at,
            level=self.level,
            actor_id=self.actor_id,
            payload=dict(self.payload or {}),
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(ApprovalAuditEventModel, "before_update")
def prevent_audit_event_update(mapper, connection, target):
    """Prevent updates to approval audit records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAuditEvent",
        entity_id=f"{target.expense_id}#{target.seq}",
        reason="Audit events are immutable -- cannot modify",
    )


@event.listens_for(ApprovalAuditEventModel, "before_delete")
def prevent_audit_event_delete(mapper, connection, target):
    """Prevent deletion of approval audit records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAuditEvent",
        entity_id=f"{target.expense_id}#{target.seq}",
        reason="Audit events are immutable -- cannot delete",
    )
