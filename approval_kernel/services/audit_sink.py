"""
Module: approval_kernel.services.audit_sink
Responsibility: Reference implementations of the ``AuditSink`` collaborator.
    ``InMemoryAuditSink`` keeps events in process; ``SqlAlchemyAuditSink``
    appends them to the hash-chained ``approval_audit_events`` table.
Architecture position: Kernel > Services.  Adapters behind the
    ``approval_kernel.domain.collaborators.AuditSink`` protocol; the pure
    engines never call them.

Invariants enforced:
    - Append-only: sinks never rewrite or drop a recorded event.
    - Per-expense ordering: an event whose sequence is not the next one for
      its expense is refused, so a gap or replay in delivery is visible.
    - Hash chain (SQLAlchemy sink): every row links to its expense's
      previous row via prev_hash.

Failure modes:
    - ValueError on an out-of-order sequence; nothing of the batch is stored.
    - AuditChainBrokenError from ``verify_chain`` when a stored row no
      longer matches its hashes.
"""

from __future__ import annotations

import json
import threading
from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.domain.approval import AuditEvent
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import ApprovalAuditEventModel
from approval_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload

logger = get_logger("services.audit_sink")


def _check_sequence(event: AuditEvent, last_sequence: int) -> None:
    if event.sequence != last_sequence + 1:
        raise ValueError(
            f"Audit event for {event.expense_id} out of order: "
            f"expected sequence {last_sequence + 1}, got {event.sequence}"
        )


class InMemoryAuditSink:
    """Thread-safe in-process event store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, list[AuditEvent]] = defaultdict(list)

    def record(self, event: AuditEvent) -> None:
        self.record_batch((event,))

    def record_batch(self, events: Sequence[AuditEvent]) -> None:
        """Append every event or none of them."""
        with self._lock:
            last: dict[str, int] = {}
            for event in events:
                if event.expense_id not in last:
                    stream = self._events.get(event.expense_id)
                    last[event.expense_id] = stream[-1].sequence if stream else 0
                _check_sequence(event, last[event.expense_id])
                last[event.expense_id] = event.sequence
            for event in events:
                self._events[event.expense_id].append(event)

    def events(self, expense_id: str) -> tuple[AuditEvent, ...]:
        with self._lock:
            return tuple(self._events.get(expense_id, ()))

    def all_events(self) -> tuple[AuditEvent, ...]:
        with self._lock:
            return tuple(e for stream in self._events.values() for e in stream)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(stream) for stream in self._events.values())


class SqlAlchemyAuditSink:
    """
    Persists events to ``approval_audit_events`` with a per-expense hash chain.

    Each ``record_batch`` call runs in one transaction: a failure on any
    event rolls back the whole batch.  Callers serialize writes per
    expense (``ApprovalService`` holds the expense lock while forwarding
    events).
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        self.record_batch((event,))

    def record_batch(self, events: Sequence[AuditEvent]) -> None:
        if not events:
            return
        with self._session_factory() as session:
            tails: dict[str, tuple[int, str | None]] = {}
            for event in events:
                if event.expense_id not in tails:
                    last = self._last_row(session, event.expense_id)
                    tails[event.expense_id] = (
                        (last.seq, last.hash) if last is not None else (0, None)
                    )
                last_seq, prev_hash = tails[event.expense_id]
                _check_sequence(event, last_seq)
                row = self._to_row(event, prev_hash)
                session.add(row)
                tails[event.expense_id] = (row.seq, row.hash)
            session.commit()

    @staticmethod
    def _to_row(event: AuditEvent, prev_hash: str | None) -> ApprovalAuditEventModel:
        # stored payload is the canonical JSON form, so hashes survive a reload
        payload = json.loads(canonicalize_json(dict(event.payload)))
        payload_hash = hash_payload(payload)
        return ApprovalAuditEventModel(
            expense_id=event.expense_id,
            seq=event.sequence,
            event_type=event.event_type.value,
            level=event.level,
            actor_id=event.actor_id,
            occurred_at=event.occurred_at,
            payload=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=hash_audit_event(
                event.expense_id,
                event.sequence,
                event.event_type.value,
                payload_hash,
                prev_hash,
            ),
        )

    def events(self, expense_id: str) -> tuple[AuditEvent, ...]:
        with self._session_factory() as session:
            return tuple(row.to_dto() for row in self._rows(session, expense_id))

    def verify_chain(self, expense_id: str) -> bool:
        """
        Recompute every hash of an expense's chain.

        Returns:
            True when the chain is intact (an empty chain is intact).
        Raises:
            AuditChainBrokenError: at the first row that does not match.
        """
        with self._session_factory() as session:
            prev_hash: str | None = None
            for row in self._rows(session, expense_id):
                payload_hash = hash_payload(row.payload or {})
                expected = hash_audit_event(
                    row.expense_id, row.seq, row.event_type, payload_hash, prev_hash,
                )
                if (
                    row.prev_hash != prev_hash
                    or row.payload_hash != payload_hash
                    or row.hash != expected
                ):
                    logger.error(
                        "audit_chain_broken",
                        extra={"expense_id": expense_id, "sequence": row.seq},
                    )
                    raise AuditChainBrokenError(expense_id, row.seq, expected, row.hash)
                prev_hash = row.hash
        return True

    @staticmethod
    def _rows(session: Session, expense_id: str) -> list[ApprovalAuditEventModel]:
        stmt = (
            select(ApprovalAuditEventModel)
            .where(ApprovalAuditEventModel.expense_id == expense_id)
            .order_by(ApprovalAuditEventModel.seq)
        )
        return list(session.scalars(stmt))

    @staticmethod
    def _last_row(session: Session, expense_id: str) -> ApprovalAuditEventModel | None:
        stmt = (
            select(ApprovalAuditEventModel)
            .where(ApprovalAuditEventModel.expense_id == expense_id)
            .order_by(ApprovalAuditEventModel.seq.desc())
            .limit(1)
        )
        return session.scalars(stmt).first()
