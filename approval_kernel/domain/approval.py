"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval engine.  Defines the rule
configuration model (rules, conditions, workflow levels, approvers,
thresholds), the concretized plan produced by the planner, the runtime
``ExpenseApprovalState`` owned by the state machine, and the audit event,
command and result records exchanged with the service layer.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Closed variants: approver roles, threshold types, workflow types and
  decisions are ``str`` enums; every rule object is validated in
  ``__post_init__`` so no reader ever meets an "undefined field".
* Contiguous levels: ``WorkflowDefinition`` levels are numbered 1..n.
* Threshold shape: ``percentage`` carries 1..100, ``count`` carries
  1..len(approvers); other types carry no value.
* Terminal permanence: ``APPROVAL_TRANSITIONS`` gives terminal statuses
  no outgoing edges.
* Rule freezing: every collection is a tuple or frozenset, so the rule
  snapshot held by an in-flight state can never change under it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from approval_kernel.exceptions import PlanningError


# =========================================================================
# Closed variants
# =========================================================================


class WorkflowType(str, Enum):
    """How the levels of a workflow are activated."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class ApproverRole(str, Enum):
    """Who an approver slot refers to, relative to the submitter."""

    MANAGER = "manager"
    DEPARTMENT_HEAD = "department-head"
    CFO = "cfo"
    CEO = "ceo"
    SPECIFIC_USER = "specific-user"


class ThresholdType(str, Enum):
    """How many approvals satisfy a level."""

    ALL = "all"
    MAJORITY = "majority"
    PERCENTAGE = "percentage"
    COUNT = "count"
    ANY = "any"


class ApprovalDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"


class LevelOutcome(str, Enum):
    """Result of evaluating one level's responses against its threshold."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Overall lifecycle of one expense's approval."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.IN_REVIEW,
        ApprovalStatus.APPROVED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.IN_REVIEW: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class LevelStatus(str, Enum):
    """Lifecycle of one level inside an expense's approval."""

    WAITING = "waiting"
    ACTIVE = "active"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    CLOSED = "closed"


OPEN_LEVEL_STATUSES: frozenset[LevelStatus] = frozenset({
    LevelStatus.WAITING,
    LevelStatus.ACTIVE,
})


class AuditEventType(str, Enum):
    """One event type per kind of state transition."""

    LEVEL_ACTIVATED = "level_activated"
    RESPONSE_RECORDED = "response_recorded"
    LEVEL_RESOLVED = "level_resolved"
    OVERALL_RESOLVED = "overall_resolved"
    ESCALATED = "escalated"
    STALLED = "stalled"
    DELEGATED = "delegated"


# =========================================================================
# Coercion helpers
# =========================================================================


def _frozen(values: Iterable[Any] | None) -> frozenset:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(values)


def _decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # floats go through str() so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def _set(obj: Any, name: str, value: Any) -> None:
    object.__setattr__(obj, name, value)


# =========================================================================
# Rule configuration
# =========================================================================


@dataclass(frozen=True)
class ApprovalThreshold:
    """How many approver responses satisfy a level.

    ``value`` is required for ``percentage`` (1..100) and ``count``
    (>= 1; the upper bound is checked by ``ApprovalLevel``), and must be
    absent for every other type.
    """

    threshold_type: ThresholdType = ThresholdType.ALL
    value: int | None = None

    def __post_init__(self) -> None:
        _set(self, "threshold_type", ThresholdType(self.threshold_type))
        if self.threshold_type in (ThresholdType.PERCENTAGE, ThresholdType.COUNT):
            if self.value is None or isinstance(self.value, bool) or not isinstance(self.value, int):
                raise ValueError(
                    f"Threshold '{self.threshold_type.value}' requires an integer value"
                )
            if self.threshold_type == ThresholdType.PERCENTAGE and not 1 <= self.value <= 100:
                raise ValueError(f"Percentage threshold must be 1..100, got {self.value}")
            if self.threshold_type == ThresholdType.COUNT and self.value < 1:
                raise ValueError(f"Count threshold must be >= 1, got {self.value}")
        elif self.value is not None:
            raise ValueError(
                f"Threshold '{self.threshold_type.value}' does not take a value"
            )


@dataclass(frozen=True)
class ApproverSpec:
    """An approver slot in a level: a role, or a specific bound user."""

    role: ApproverRole
    user_id: str | None = None
    is_required: bool = True

    def __post_init__(self) -> None:
        _set(self, "role", ApproverRole(self.role))
        if self.role == ApproverRole.SPECIFIC_USER and not self.user_id:
            raise ValueError("specific-user approver requires a user_id")
        if self.role != ApproverRole.SPECIFIC_USER and self.user_id is not None:
            raise ValueError(
                f"Approver role '{self.role.value}' must not bind a user_id"
            )


@dataclass(frozen=True)
class LevelTimeLimit:
    """Per-level escalation window, overriding the rule's policy."""

    hours: int
    escalate_to: ApproverSpec | None = None

    def __post_init__(self) -> None:
        if self.hours < 1:
            raise ValueError(f"Time limit must be at least 1 hour, got {self.hours}")


@dataclass(frozen=True)
class ApprovalLevel:
    """One stage of approvals within a workflow."""

    level: int
    approvers: tuple[ApproverSpec, ...]
    threshold: ApprovalThreshold = field(default_factory=ApprovalThreshold)
    condition: str | None = None
    time_limit: LevelTimeLimit | None = None

    def __post_init__(self) -> None:
        _set(self, "approvers", tuple(self.approvers))
        if self.level < 1:
            raise ValueError(f"Level numbers start at 1, got {self.level}")
        if not self.approvers:
            raise ValueError(f"Level {self.level} has no approvers")
        if (
            self.threshold.threshold_type == ThresholdType.COUNT
            and self.threshold.value > len(self.approvers)
        ):
            raise ValueError(
                f"Level {self.level}: count threshold {self.threshold.value} "
                f"exceeds {len(self.approvers)} approver(s)"
            )


@dataclass(frozen=True)
class WorkflowDefinition:
    """Workflow type plus ordered, contiguous levels."""

    workflow_type: WorkflowType
    levels: tuple[ApprovalLevel, ...]

    def __post_init__(self) -> None:
        _set(self, "workflow_type", WorkflowType(self.workflow_type))
        _set(self, "levels", tuple(self.levels))
        if not self.levels:
            raise ValueError("Workflow requires at least one level")
        numbers = [lvl.level for lvl in self.levels]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError(
                f"Levels must be numbered 1..{len(numbers)} in order, got {numbers}"
            )


@dataclass(frozen=True)
class RuleConditions:
    """Which expenses a rule applies to.

    Amount range is inclusive at both ends; ``max_amount=None`` is
    unbounded.  Empty sets impose no restriction.
    """

    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    categories: frozenset[str] = frozenset()
    departments: frozenset[str] = frozenset()
    submitter_roles: frozenset[str] = frozenset()
    submitter_ids: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        _set(self, "min_amount", _decimal(self.min_amount))
        if self.max_amount is not None:
            _set(self, "max_amount", _decimal(self.max_amount))
        for name in ("categories", "departments", "submitter_roles", "submitter_ids"):
            _set(self, name, _frozen(getattr(self, name)))
        if self.min_amount < 0:
            raise ValueError(f"Minimum amount cannot be negative, got {self.min_amount}")
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError(
                f"Maximum amount {self.max_amount} is below minimum {self.min_amount}"
            )


@dataclass(frozen=True)
class AutoApprovalConditions:
    """Shortcut that bypasses the workflow entirely.

    Satisfied when enabled and every configured condition holds.  An
    enabled block with no conditions configured never matches.
    """

    enabled: bool = False
    max_amount: Decimal | None = None
    categories: frozenset[str] = frozenset()
    trusted_submitters: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.max_amount is not None:
            _set(self, "max_amount", _decimal(self.max_amount))
        _set(self, "categories", _frozen(self.categories))
        _set(self, "trusted_submitters", _frozen(self.trusted_submitters))

    @property
    def has_conditions(self) -> bool:
        return (
            self.max_amount is not None
            or bool(self.categories)
            or bool(self.trusted_submitters)
        )


@dataclass(frozen=True)
class EscalationPolicy:
    """Rule-wide escalation of stalled levels."""

    enabled: bool = False
    after_hours: int | None = None
    escalate_to: ApproverSpec | None = None

    def __post_init__(self) -> None:
        if self.after_hours is not None and self.after_hours < 1:
            raise ValueError(f"Escalation window must be >= 1 hour, got {self.after_hours}")


@dataclass(frozen=True)
class DelegationPolicy:
    """Whether approvers may hand their slot to someone else."""

    enabled: bool = False
    allow_self_delegation: bool = False


@dataclass(frozen=True)
class ApprovalRule:
    """A prioritized, conditional approval policy.

    Lower ``priority`` wins.  Equal priorities are broken by
    ``created_at`` (earliest first; rules without a creation time rank
    last) and then by ``rule_id`` ascending.
    """

    rule_id: str
    name: str
    workflow: WorkflowDefinition
    priority: int = 1
    is_active: bool = True
    created_at: datetime | None = None
    conditions: RuleConditions = field(default_factory=RuleConditions)
    auto_approval: AutoApprovalConditions | None = None
    escalation: EscalationPolicy | None = None
    delegation: DelegationPolicy | None = None
    description: str = ""


# =========================================================================
# Expense and identities
# =========================================================================


@dataclass(frozen=True)
class ExpenseSnapshot:
    """The expense attributes the engine reasons about.

    ``amount`` is in ``currency``; the service converts it to the base
    currency before rule matching.
    """

    submitter_id: str
    amount: Decimal
    currency: str = "USD"
    category: str | None = None
    department: str | None = None
    submitter_role: str | None = None

    def __post_init__(self) -> None:
        _set(self, "amount", _decimal(self.amount))

    def as_context(self) -> dict[str, Any]:
        """Field mapping exposed to level condition expressions."""
        return {
            "submitter_id": self.submitter_id,
            "amount": self.amount,
            "currency": self.currency,
            "category": self.category,
            "department": self.department,
            "submitter_role": self.submitter_role,
        }


@dataclass(frozen=True)
class Identity:
    """A concrete person returned by the directory."""

    user_id: str
    display_name: str = ""
    is_active: bool = True


# =========================================================================
# Concrete plan
# =========================================================================


@dataclass(frozen=True)
class ResolvedApprover:
    """An approver slot expanded to a concrete identity."""

    user_id: str
    role: ApproverRole
    is_required: bool = True
    added_by_escalation: bool = False


@dataclass(frozen=True)
class PlannedLevel:
    """A level with concrete approver identities."""

    level: int
    approvers: tuple[ResolvedApprover, ...]
    threshold: ApprovalThreshold
    condition: str | None = None
    escalation_hours: int | None = None
    escalation_target: Identity | None = None
    escalation_role: ApproverRole | None = None

    @property
    def approver_ids(self) -> tuple[str, ...]:
        return tuple(a.user_id for a in self.approvers)

    @property
    def required_ids(self) -> frozenset[str]:
        return frozenset(a.user_id for a in self.approvers if a.is_required)

    def is_member(self, user_id: str) -> bool:
        return any(a.user_id == user_id for a in self.approvers)


@dataclass(frozen=True)
class ConcretePlan:
    """Output of the workflow planner.

    A plan with ``auto_approved=True`` has zero levels and makes the state
    machine terminate as approved on start.
    """

    rule_id: str
    workflow_type: WorkflowType
    levels: tuple[PlannedLevel, ...] = ()
    auto_approved: bool = False
    auto_approval_reason: str = ""


# =========================================================================
# Runtime state
# =========================================================================


@dataclass(frozen=True)
class ResponseRecord:
    """One approver's decision at one level. Replaced, never duplicated."""

    approver_id: str
    decision: ApprovalDecision
    comment: str = ""
    responded_at: datetime | None = None
    acted_by: str | None = None


@dataclass(frozen=True)
class Delegation:
    """Permission for ``delegate_id`` to respond in ``approver_id``'s place."""

    approver_id: str
    delegate_id: str
    granted_at: datetime
    valid_until: datetime | None = None

    def is_valid_at(self, at: datetime) -> bool:
        return self.valid_until is None or at <= self.valid_until


@dataclass(frozen=True)
class LevelState:
    """Runtime view of one planned level."""

    plan: PlannedLevel
    status: LevelStatus = LevelStatus.WAITING
    responses: tuple[ResponseRecord, ...] = ()
    activated_at: datetime | None = None
    deadline: datetime | None = None
    escalated: bool = False
    delegations: tuple[Delegation, ...] = ()
    resolved_at: datetime | None = None

    @property
    def level(self) -> int:
        return self.plan.level

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LEVEL_STATUSES

    def response_of(self, approver_id: str) -> ResponseRecord | None:
        for response in self.responses:
            if response.approver_id == approver_id:
                return response
        return None


@dataclass(frozen=True)
class ExpenseApprovalState:
    """The single source of truth for one expense's approval.

    Replaced (never mutated) by the state machine's transition functions.
    ``rule`` is the frozen snapshot the expense was planned against;
    later edits to the configured rule never reach it.
    """

    expense_id: str
    rule: ApprovalRule
    plan: ConcretePlan
    expense: ExpenseSnapshot
    status: ApprovalStatus = ApprovalStatus.PENDING
    levels: tuple[LevelState, ...] = ()
    submitted_at: datetime | None = None
    resolved_at: datetime | None = None
    sequence: int = 0

    @property
    def rule_id(self) -> str:
        return self.rule.rule_id

    @property
    def workflow_type(self) -> WorkflowType:
        return self.plan.workflow_type

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @property
    def active_levels(self) -> frozenset[int]:
        return frozenset(
            lvl.level for lvl in self.levels if lvl.status == LevelStatus.ACTIVE
        )

    @property
    def is_escalated(self) -> bool:
        return any(
            lvl.escalated and lvl.status == LevelStatus.ACTIVE for lvl in self.levels
        )

    def level(self, number: int) -> LevelState | None:
        if 1 <= number <= len(self.levels):
            return self.levels[number - 1]
        return None


# =========================================================================
# Events, commands and results
# =========================================================================


@dataclass(frozen=True)
class AuditEvent:
    """One state transition, emitted for the audit collaborator."""

    expense_id: str
    sequence: int
    event_type: AuditEventType
    occurred_at: datetime
    level: int | None = None
    actor_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expense_id": self.expense_id,
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "level": self.level,
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True)
class TimeoutRequest:
    """Ask the scheduler to call back at ``deadline``."""

    expense_id: str
    level: int
    deadline: datetime


@dataclass(frozen=True)
class Transition:
    """Result of applying one command to a state.

    ``applied=False`` means the command was a silent no-op; ``state`` is
    then the unchanged input and ``events``/``timeouts`` are empty.
    """

    state: ExpenseApprovalState
    events: tuple[AuditEvent, ...] = ()
    timeouts: tuple[TimeoutRequest, ...] = ()
    applied: bool = True


class CommandKind(str, Enum):
    """Inputs the state machine reacts to."""

    START = "start"
    RESPOND = "respond"
    TIMEOUT = "timeout"
    CANCEL = "cancel"
    DELEGATE = "delegate"


@dataclass(frozen=True)
class Command:
    """A recorded input, replayable against a fresh plan."""

    kind: CommandKind
    at: datetime
    level: int | None = None
    approver_id: str | None = None
    decision: ApprovalDecision | None = None
    comment: str = ""
    actor_id: str | None = None
    delegate_id: str | None = None
    valid_until: datetime | None = None


class PlanResultKind(str, Enum):
    """Outcome of a submission."""

    APPROVED_IMMEDIATELY = "approved_immediately"
    IN_REVIEW = "in_review"
    PLANNING_ERROR = "planning_error"


@dataclass(frozen=True)
class PlanResult:
    """What ``submit_for_approval`` returns."""

    kind: PlanResultKind
    expense_id: str
    state: ExpenseApprovalState | None = None
    error: PlanningError | None = None

    @property
    def active_levels(self) -> frozenset[int]:
        if self.state is None:
            return frozenset()
        return self.state.active_levels
