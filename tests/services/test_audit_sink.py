"""
Tests for the audit sinks.

The SQLAlchemy sink is exercised against in-memory SQLite: per-expense
hash chains, out-of-order rejection, atomic batches, tamper detection
and the ORM-level append-only guard.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, update

from approval_kernel.domain.approval import AuditEvent, AuditEventType
from approval_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from approval_kernel.models.audit_event import ApprovalAuditEventModel
from approval_kernel.services.audit_sink import InMemoryAuditSink, SqlAlchemyAuditSink
from approval_services.approval_service import ApprovalService
from tests.factories import make_expense

AT = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def make_event(sequence: int, expense_id: str = "exp-1", **payload) -> AuditEvent:
    return AuditEvent(
        expense_id=expense_id,
        sequence=sequence,
        event_type=AuditEventType.RESPONSE_RECORDED,
        occurred_at=AT,
        level=1,
        actor_id="mgr-1",
        payload=payload or {"decision": "approve"},
    )


class FailingRowSink(SqlAlchemyAuditSink):
    """Raises while building the row for one chosen sequence number."""

    def __init__(self, session_factory, fail_on_sequence=None):
        super().__init__(session_factory)
        self.fail_on_sequence = fail_on_sequence

    def _to_row(self, event, prev_hash):
        if event.sequence == self.fail_on_sequence:
            raise RuntimeError(f"storage unavailable at sequence {event.sequence}")
        return super()._to_row(event, prev_hash)


class TestInMemoryAuditSink:

    def test_records_in_order_per_expense(self):
        sink = InMemoryAuditSink()
        sink.record(make_event(1))
        sink.record(make_event(1, expense_id="exp-2"))
        sink.record(make_event(2))

        assert [e.sequence for e in sink.events("exp-1")] == [1, 2]
        assert len(sink) == 3
        assert len(sink.all_events()) == 3

    def test_gap_rejected(self):
        sink = InMemoryAuditSink()
        sink.record(make_event(1))

        with pytest.raises(ValueError):
            sink.record(make_event(3))

    def test_unknown_expense_is_empty(self):
        assert InMemoryAuditSink().events("nope") == ()

    def test_batch_is_all_or_nothing(self):
        sink = InMemoryAuditSink()
        sink.record(make_event(1))

        with pytest.raises(ValueError):
            sink.record_batch([make_event(2), make_event(4)])

        assert [e.sequence for e in sink.events("exp-1")] == [1]
        sink.record_batch([make_event(2), make_event(3)])
        assert [e.sequence for e in sink.events("exp-1")] == [1, 2, 3]


class TestSqlAlchemyAuditSink:

    def test_round_trip(self, sql_audit_sink):
        sql_audit_sink.record(make_event(1, decision="approve", comment="fine"))

        (event,) = sql_audit_sink.events("exp-1")

        assert event.sequence == 1
        assert event.event_type == AuditEventType.RESPONSE_RECORDED
        assert event.occurred_at == AT
        assert event.payload == {"comment": "fine", "decision": "approve"}

    def test_chain_links_per_expense(self, sql_audit_sink, sqlite_session_factory):
        for seq in (1, 2, 3):
            sql_audit_sink.record(make_event(seq))
        sql_audit_sink.record(make_event(1, expense_id="exp-2"))

        with sqlite_session_factory() as session:
            rows = session.scalars(
                select(ApprovalAuditEventModel)
                .where(ApprovalAuditEventModel.expense_id == "exp-1")
                .order_by(ApprovalAuditEventModel.seq)
            ).all()
            other = session.scalars(
                select(ApprovalAuditEventModel).where(ApprovalAuditEventModel.expense_id == "exp-2")
            ).one()

        assert rows[0].is_genesis
        assert [r.prev_hash for r in rows[1:]] == [r.hash for r in rows[:-1]]
        assert other.is_genesis
        assert sql_audit_sink.verify_chain("exp-1")
        assert sql_audit_sink.verify_chain("exp-2")

    def test_empty_chain_is_intact(self, sql_audit_sink):
        assert sql_audit_sink.verify_chain("nothing-here")

    def test_out_of_order_rejected(self, sql_audit_sink):
        sql_audit_sink.record(make_event(1))

        with pytest.raises(ValueError):
            sql_audit_sink.record(make_event(1))

    def test_batch_commits_once(self, sql_audit_sink):
        sql_audit_sink.record_batch([make_event(1), make_event(2), make_event(1, expense_id="exp-2")])

        assert [e.sequence for e in sql_audit_sink.events("exp-1")] == [1, 2]
        assert sql_audit_sink.verify_chain("exp-1")
        assert sql_audit_sink.verify_chain("exp-2")

    def test_failure_mid_batch_stores_nothing(self, sqlite_session_factory):
        sink = FailingRowSink(sqlite_session_factory, fail_on_sequence=3)
        sink.record(make_event(1))

        with pytest.raises(RuntimeError):
            sink.record_batch([make_event(2), make_event(3), make_event(4)])

        assert [e.sequence for e in sink.events("exp-1")] == [1]
        assert sink.verify_chain("exp-1")

    def test_service_retries_after_failed_batch(
        self, directory, sqlite_session_factory, deterministic_clock, manager_then_cfo_rule,
    ):
        """A transition whose events could not be stored leaves the expense usable."""
        sink = FailingRowSink(sqlite_session_factory)
        service = ApprovalService(directory, sink, clock=deterministic_clock)
        service.submit_for_approval("exp-1", make_expense(), [manager_then_cfo_rule])

        # manager approval emits sequences 2..4; fail on the second of them
        sink.fail_on_sequence = 3
        with pytest.raises(RuntimeError):
            service.respond("exp-1", 1, "mgr-1", "approve")

        assert service.get_state("exp-1").sequence == 1
        assert [e.sequence for e in sink.events("exp-1")] == [1]

        sink.fail_on_sequence = None
        state = service.respond("exp-1", 1, "mgr-1", "approve")
        service.cancel("exp-1", actor_id="emp-1")

        assert state.active_levels == {2}
        assert [e.sequence for e in sink.events("exp-1")] == list(range(1, 6))
        assert sink.verify_chain("exp-1")

    def test_tampered_payload_detected(self, sql_audit_sink, sqlite_session_factory, captured_logs):
        """A payload edited behind the ORM's back breaks the chain."""
        sql_audit_sink.record(make_event(1))
        sql_audit_sink.record(make_event(2, decision="reject"))

        with sqlite_session_factory() as session:
            # Core UPDATE bypasses the ORM listeners, like a raw SQL edit
            session.execute(
                update(ApprovalAuditEventModel)
                .where(ApprovalAuditEventModel.seq == 2)
                .values(payload={"decision": "approve"})
            )
            session.commit()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            sql_audit_sink.verify_chain("exp-1")

        assert exc_info.value.sequence == 2
        assert any(r["message"] == "audit_chain_broken" for r in captured_logs())

    def test_orm_update_refused(self, sql_audit_sink, sqlite_session_factory):
        sql_audit_sink.record(make_event(1))

        with sqlite_session_factory() as session:
            row = session.scalars(select(ApprovalAuditEventModel)).one()
            row.actor_id = "someone-else"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
            session.rollback()

    def test_orm_delete_refused(self, sql_audit_sink, sqlite_session_factory):
        sql_audit_sink.record(make_event(1))

        with sqlite_session_factory() as session:
            row = session.scalars(select(ApprovalAuditEventModel)).one()
            session.delete(row)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
            session.rollback()

    def test_service_writes_verifiable_chain(
        self, directory, sql_audit_sink, deterministic_clock, manager_then_cfo_rule,
    ):
        service = ApprovalService(directory, sql_audit_sink, clock=deterministic_clock)

        service.submit_for_approval("exp-1", make_expense(), [manager_then_cfo_rule])
        service.respond("exp-1", 1, "mgr-1", "approve")
        service.respond("exp-1", 2, "cfo-1", "reject", "no")

        events = sql_audit_sink.events("exp-1")
        assert events[-1].payload["status"] == "rejected"
        assert sql_audit_sink.verify_chain("exp-1")
