"""
Tests for the approval domain value objects.

Structural validation happens in ``__post_init__``: an invalid rule can
not even be constructed, so no evaluator ever meets one.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalLevel,
    ApprovalStatus,
    ApprovalThreshold,
    ApproverRole,
    ApproverSpec,
    AuditEvent,
    AuditEventType,
    Delegation,
    EscalationPolicy,
    ExpenseSnapshot,
    LevelTimeLimit,
    RuleConditions,
    ThresholdType,
    WorkflowDefinition,
)
from tests.factories import approver, make_level, make_rule

AT = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


class TestApprovalThreshold:

    def test_default_is_all(self):
        assert ApprovalThreshold().threshold_type == ThresholdType.ALL

    def test_string_type_coerced(self):
        assert ApprovalThreshold("majority").threshold_type == ThresholdType.MAJORITY

    @pytest.mark.parametrize("value", [0, 101, None])
    def test_percentage_range(self, value):
        with pytest.raises(ValueError):
            ApprovalThreshold(ThresholdType.PERCENTAGE, value)

    def test_count_requires_positive_value(self):
        with pytest.raises(ValueError):
            ApprovalThreshold(ThresholdType.COUNT, 0)

    def test_bool_is_not_a_count(self):
        with pytest.raises(ValueError):
            ApprovalThreshold(ThresholdType.COUNT, True)

    @pytest.mark.parametrize("kind", [ThresholdType.ALL, ThresholdType.ANY, ThresholdType.MAJORITY])
    def test_value_rejected_for_valueless_types(self, kind):
        with pytest.raises(ValueError):
            ApprovalThreshold(kind, 2)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            ApprovalThreshold("most")


class TestApproverSpec:

    def test_specific_user_requires_user_id(self):
        with pytest.raises(ValueError):
            ApproverSpec(role=ApproverRole.SPECIFIC_USER)

    def test_role_must_not_bind_user(self):
        with pytest.raises(ValueError):
            ApproverSpec(role=ApproverRole.MANAGER, user_id="mgr-1")

    def test_role_string_coerced(self):
        assert ApproverSpec(role="department-head").role == ApproverRole.DEPARTMENT_HEAD


class TestLevelsAndWorkflows:

    def test_level_needs_approvers(self):
        with pytest.raises(ValueError):
            ApprovalLevel(level=1, approvers=())

    def test_count_cannot_exceed_approvers(self):
        with pytest.raises(ValueError):
            make_level(1, approver(ApproverRole.MANAGER), threshold="count", value=2)

    def test_levels_must_be_contiguous(self):
        with pytest.raises(ValueError):
            WorkflowDefinition("sequential", (make_level(1), make_level(3)))

    def test_workflow_needs_levels(self):
        with pytest.raises(ValueError):
            WorkflowDefinition("parallel", ())

    def test_time_limit_at_least_one_hour(self):
        with pytest.raises(ValueError):
            LevelTimeLimit(hours=0)

    def test_escalation_window_positive(self):
        with pytest.raises(ValueError):
            EscalationPolicy(enabled=True, after_hours=0)


class TestRuleConditions:

    def test_float_amounts_go_through_str(self):
        conditions = RuleConditions(min_amount=0.1, max_amount=10.5)

        assert conditions.min_amount == Decimal("0.1")
        assert conditions.max_amount == Decimal("10.5")

    def test_max_below_min_rejected(self):
        with pytest.raises(ValueError):
            RuleConditions(min_amount=100, max_amount=50)

    def test_negative_min_rejected(self):
        with pytest.raises(ValueError):
            RuleConditions(min_amount=-1)

    def test_string_category_becomes_singleton(self):
        assert RuleConditions(categories="travel").categories == frozenset({"travel"})

    def test_rule_is_frozen(self):
        rule = make_rule()

        with pytest.raises(AttributeError):
            rule.priority = 5


class TestStatusLifecycle:

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_APPROVAL_STATUSES:
            assert APPROVAL_TRANSITIONS[status] == frozenset()

    def test_every_status_has_transition_entry(self):
        assert set(APPROVAL_TRANSITIONS) == set(ApprovalStatus)

    def test_pending_cannot_reject_directly(self):
        assert ApprovalStatus.REJECTED not in APPROVAL_TRANSITIONS[ApprovalStatus.PENDING]


class TestSmallValueObjects:

    def test_expense_context_fields(self):
        expense = ExpenseSnapshot(submitter_id="emp-1", amount="12.50", category="meals")

        ctx = expense.as_context()

        assert ctx["amount"] == Decimal("12.50")
        assert ctx["category"] == "meals"
        assert set(ctx) == {
            "submitter_id", "amount", "currency", "category", "department", "submitter_role",
        }

    def test_delegation_validity_window(self):
        delegation = Delegation("mgr-1", "emp-2", AT, valid_until=AT + timedelta(hours=1))

        assert delegation.is_valid_at(AT + timedelta(hours=1))
        assert not delegation.is_valid_at(AT + timedelta(hours=1, seconds=1))
        assert Delegation("mgr-1", "emp-2", AT).is_valid_at(AT + timedelta(days=365))

    def test_audit_event_to_dict(self):
        event = AuditEvent(
            expense_id="exp-1",
            sequence=3,
            event_type=AuditEventType.ESCALATED,
            occurred_at=AT,
            level=1,
            payload={"escalated_to": "head-eng"},
        )

        assert event.to_dict() == {
            "expense_id": "exp-1",
            "sequence": 3,
            "event_type": "escalated",
            "occurred_at": AT.isoformat(),
            "level": 1,
            "actor_id": None,
            "payload": {"escalated_to": "head-eng"},
        }
