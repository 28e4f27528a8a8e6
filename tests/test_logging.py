"""
Tests for structured logging (approval_kernel/logging_config.py) as the
approval engine uses it.

Tests cover:
- StructuredFormatter: encoding of Decimal / Enum / set / datetime values,
  context-over-extra precedence, structured exception attributes
- LogContext: the approval fields, bind/restore, unknown names
- ApprovalService: context stamped on every record of a call, audit
  payloads carried as fields, ignored inputs logged at debug
- configure_logging / reset_logging
"""

import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from approval_kernel.domain.approval import ApprovalDecision, LevelStatus, WorkflowType
from approval_kernel.exceptions import (
    ConfigurationIntegrityError,
    ExpenseNotFoundError,
    PlanningError,
    PlanningReason,
)
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from tests.factories import make_expense, make_level, make_rule

APPROVE = ApprovalDecision.APPROVE


def _format(message: str = "event", exc_info=None, **extra) -> dict:
    """Run one record through the formatter and parse the JSON line."""
    record = logging.LogRecord(
        "approval_kernel.test", logging.INFO, __file__, 1, message, (), exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


def _messages(logs: list[dict], message: str) -> list[dict]:
    return [r for r in logs if r["message"] == message]


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_envelope(self):
        record = _format("plan_built")

        assert record["message"] == "plan_built"
        assert record["level"] == "INFO"
        assert record["logger"] == "approval_kernel.test"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_domain_values_encoded(self):
        record = _format(
            amount=Decimal("1200.50"),
            status=LevelStatus.ACTIVE,
            approvers={"mgr-1", "cfo-1"},
            deadline=datetime(2024, 1, 2, 12, tzinfo=timezone.utc),
        )

        assert record["amount"] == "1200.50"
        assert record["status"] == "active"
        assert record["approvers"] == ["cfo-1", "mgr-1"]
        assert record["deadline"] == "2024-01-02T12:00:00+00:00"

    def test_context_wins_over_extra(self):
        """Engines pass expense_id as an extra; the bound context is authoritative."""
        with LogContext.bind(expense_id="exp-ctx"):
            record = _format(expense_id="exp-extra", reason="terminal")

        assert record["expense_id"] == "exp-ctx"
        assert record["reason"] == "terminal"

    def test_planning_error_attributes(self):
        error = PlanningError(
            PlanningReason.NO_HOLDER_FOR_ROLE, "cfo of emp-1 not found", level=2, rule_id="r-1",
        )
        try:
            raise error
        except PlanningError:
            record = _format("planning_failed", exc_info=sys.exc_info())

        assert record["exc_code"] == "PLANNING_ERROR"
        assert record["exc_reason"] == "no_holder_for_role"
        assert record["exc_level"] == 2
        assert record["exc_rule_id"] == "r-1"
        assert "traceback" in record


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_approval_fields(self):
        LogContext.set(
            correlation_id="c", expense_id="e", rule_id="r", actor_id="a", approval_level="2",
        )

        assert LogContext.get_all() == {
            "correlation_id": "c",
            "expense_id": "e",
            "rule_id": "r",
            "actor_id": "a",
            "approval_level": "2",
        }

    def test_none_values_do_not_overwrite(self):
        LogContext.set(actor_id="mgr-1")
        LogContext.set(actor_id=None, expense_id="exp-1")

        assert LogContext.get_all() == {"actor_id": "mgr-1", "expense_id": "exp-1"}

    def test_nested_bind_restores_outer_values(self):
        with LogContext.bind(expense_id="exp-1", actor_id="emp-1"):
            with LogContext.bind(actor_id="mgr-1", approval_level="1"):
                assert LogContext.get_all() == {
                    "expense_id": "exp-1", "actor_id": "mgr-1", "approval_level": "1",
                }
            assert LogContext.get_all() == {"expense_id": "exp-1", "actor_id": "emp-1"}
        assert LogContext.get_all() == {}

    def test_unknown_names_ignored(self):
        with LogContext.bind(expense_id="e", level=3):
            assert LogContext.get_all() == {"expense_id": "e"}


# ---------------------------------------------------------------------------
# ApprovalService records
# ---------------------------------------------------------------------------


class TestServiceRecords:

    def test_respond_stamps_context(self, service, manager_then_cfo_rule, captured_logs):
        service.submit_for_approval("exp-1", make_expense(), [manager_then_cfo_rule])
        service.respond("exp-1", 1, "mgr-1", APPROVE, "ok")

        (recorded,) = _messages(captured_logs(), "response_recorded")
        assert recorded["expense_id"] == "exp-1"
        assert recorded["actor_id"] == "mgr-1"
        assert recorded["approval_level"] == "1"
        assert recorded["event_level"] == 1
        assert recorded["sequence"] == 2
        assert recorded["decision"] == "approve"
        assert recorded["comment"] == "ok"
        assert LogContext.get_all() == {}

    def test_submission_records_carry_rule(self, service, manager_then_cfo_rule, captured_logs):
        service.submit_for_approval("exp-1", make_expense(), [manager_then_cfo_rule])

        logs = captured_logs()
        (selected,) = _messages(logs, "rule_selected")
        assert selected["rule_id"] == manager_then_cfo_rule.rule_id
        assert selected["actor_id"] == "emp-1"
        (activated,) = _messages(logs, "level_activated")
        assert activated["approvers"] == ["mgr-1"]

    def test_ignored_response_logged_at_debug(self, service, manager_then_cfo_rule, captured_logs):
        service.submit_for_approval("exp-1", make_expense(), [manager_then_cfo_rule])
        service.respond("exp-1", 2, "cfo-1", APPROVE)

        (ignored,) = _messages(captured_logs(), "response_ignored")
        assert ignored["level"] == "DEBUG"
        assert ignored["expense_id"] == "exp-1"
        assert ignored["actor_id"] == "cfo-1"
        assert ignored["approval_level"] == "2"

    def test_conversion_amounts_as_strings(self, service, captured_logs):
        service.submit_for_approval("exp-1", make_expense(amount=100, currency="EUR"), [make_rule()])

        (converted,) = _messages(captured_logs(), "amount_converted")
        assert converted["from_currency"] == "EUR"
        assert converted["original_amount"] == "100"
        assert Decimal(converted["converted_amount"]) == Decimal("110")

    def test_failing_condition_logged_and_nothing_stored(self, service, captured_logs):
        rule = make_rule(
            workflow_type=WorkflowType.CONDITIONAL,
            levels=(make_level(1, condition="expense.amount * 1.1 > 1000"),),
        )

        with pytest.raises(ConfigurationIntegrityError):
            service.submit_for_approval("exp-1", make_expense(amount=50000), [rule])

        (failed,) = _messages(captured_logs(), "condition_evaluation_failed")
        assert failed["level"] == "ERROR"
        assert failed["expense_id"] == "exp-1"
        assert failed["expression"] == "expense.amount * 1.1 > 1000"
        with pytest.raises(ExpenseNotFoundError):
            service.get_state("exp-1")


# ---------------------------------------------------------------------------
# configure_logging / reset_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _fresh_logging(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG, stream=StringIO())

    def test_idempotent(self):
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        get_logger("engines.planner").info("plan_built")

        assert len(logging.getLogger("approval_kernel").handlers) == 1
        assert json.loads(first.getvalue())["logger"] == "approval_kernel.engines.planner"
        assert second.getvalue() == ""

    def test_level_filters_engine_debug(self):
        stream = StringIO()
        configure_logging(stream=stream, level=logging.INFO)

        get_logger("engines.state_machine").debug("response_ignored")
        get_logger("engines.state_machine").info("level_activated")

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [r["message"] for r in lines] == ["level_activated"]

    def test_reset_restores_propagation(self):
        configure_logging(stream=StringIO())
        reset_logging()

        root = logging.getLogger("approval_kernel")
        assert root.handlers == []
        assert root.propagate
