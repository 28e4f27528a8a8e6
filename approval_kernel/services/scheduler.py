"""
Module: approval_kernel.services.scheduler
Responsibility: In-memory ``Scheduler`` collaborator.  Records requested
    escalation deadlines and hands back the ones that are due, so a cron
    job (or a test) can call ``ApprovalService.escalate`` for each.
Architecture position: Kernel > Services.  The engine never runs its own
    timer thread; this is the pull-based stand-in for an external timer.
"""

from __future__ import annotations

import threading
from datetime import datetime

from approval_kernel.domain.approval import TimeoutRequest


class InMemoryScheduler:
    """Pending timeouts, ordered by deadline when drained."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: list[TimeoutRequest] = []

    def schedule_timeout(self, expense_id: str, level: int, deadline: datetime) -> None:
        with self._lock:
            self._pending.append(TimeoutRequest(expense_id, level, deadline))

    @property
    def pending(self) -> tuple[TimeoutRequest, ...]:
        with self._lock:
            return tuple(self._pending)

    def due(self, at: datetime) -> list[TimeoutRequest]:
        """Remove and return every request whose deadline is at or before ``at``."""
        with self._lock:
            ready = [r for r in self._pending if r.deadline <= at]
            self._pending = [r for r in self._pending if r.deadline > at]
        return sorted(ready, key=lambda r: (r.deadline, r.expense_id, r.level))
