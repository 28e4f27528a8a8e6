"""
Collaborator protocols consumed by the approval engine.

Each protocol is the narrow, synchronous contract the engine relies on.
Implementations live outside the pure layer (see
``approval_kernel.services``); latency and retry behavior are theirs.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from approval_kernel.domain.approval import ApproverRole, AuditEvent, Identity


class Directory(Protocol):
    """Pluggable interface for organizational lookups."""

    def resolve_role_holder(
        self, submitter_id: str, role: ApproverRole,
    ) -> Identity | None:
        """Return who holds ``role`` relative to the submitter, or None."""
        ...

    def resolve_user(self, user_id: str) -> Identity | None:
        """Return the identity for ``user_id`` (possibly inactive), or None."""
        ...


class CurrencyConverter(Protocol):
    """Rate lookup service. Raises ConversionFailedError on failure."""

    def convert(
        self, amount: Decimal, from_currency: str, to_currency: str,
    ) -> Decimal:
        ...


class Scheduler(Protocol):
    """Timer collaborator that later calls back ``escalate``."""

    def schedule_timeout(
        self, expense_id: str, level: int, deadline: datetime,
    ) -> None:
        ...


class AuditSink(Protocol):
    """Append-only receiver of approval audit events."""

    def record(self, event: AuditEvent) -> None:
        ...

    def record_batch(self, events: Sequence[AuditEvent]) -> None:
        """Store all events of one transition, or none of them."""
        ...
