"""
approval_engines.planner -- Workflow planning.

Responsibility:
    Turn a matched rule's workflow definition into a concrete plan:
    every approver slot expanded to a directory identity, every level's
    escalation window and escalation target resolved, or a zero-level
    auto-approved plan when the rule's shortcut conditions hold.

Architecture position:
    Engines -- pure calculation layer.  The only outside call is to the
    injected ``Directory`` collaborator, passed in by the caller.

Invariants enforced:
    - Auto-approval is evaluated before any directory lookup.
    - All-or-nothing: any failure raises PlanningError; no partial plan
      is ever returned.
    - A plan never contains an unsatisfiable level: empty levels and
      ``count`` thresholds above the number of distinct approvers are
      planning errors.
    - Approver slots resolving to the same person collapse into one
      approver (required if any collapsed slot was required).

Failure modes:
    - PlanningError(UNRESOLVED_APPROVER): a specific user (or escalation
      target) is unknown or inactive.
    - PlanningError(NO_HOLDER_FOR_ROLE): nobody holds a required role.
    - PlanningError(EMPTY_LEVEL): no approver of a level resolved (only
      optional slots can be dropped).
    - PlanningError(UNSATISFIABLE_LEVEL): count threshold exceeds the
      distinct approvers of a level.
    - DirectoryLookupError from the collaborator becomes the matching
      PlanningError variant.
"""

from __future__ import annotations


from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ApprovalLevel,
    ApprovalRule,
    ApproverRole,
    ApproverSpec,
    ConcretePlan,
    ExpenseSnapshot,
    Identity,
    PlannedLevel,
    ResolvedApprover,
    ThresholdType,
    WorkflowType,
)
from approval_kernel.domain.collaborators import Directory
from approval_kernel.exceptions import (
    DirectoryLookupError,
    PlanningError,
    PlanningReason,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.planner")

DEFAULT_ESCALATION_HOURS = 48


def auto_approval_applies(
    rule: ApprovalRule,
    expense: ExpenseSnapshot,
) -> tuple[bool, str]:
    """Check the rule's auto-approval shortcut.

    Returns:
        (applies, reason).  An enabled block with no conditions never
        applies.
    """
    conditions = rule.auto_approval
    if conditions is None or not conditions.enabled or not conditions.has_conditions:
        return False, ""

    reasons: list[str] = []
    if conditions.max_amount is not None:
        if not expense.amount < conditions.max_amount:
            return False, ""
        reasons.append(f"amount {expense.amount} below {conditions.max_amount}")
    if conditions.categories:
        if expense.category not in conditions.categories:
            return False, ""
        reasons.append(f"category {expense.category}")
    if conditions.trusted_submitters:
        if expense.submitter_id not in conditions.trusted_submitters:
            return False, ""
        reasons.append(f"trusted submitter {expense.submitter_id}")

    return True, "Auto-approved: " + ", ".join(reasons)


@traced_engine("planner", "1.0", fingerprint_fields=("rule", "expense"))
def build_plan(
    rule: ApprovalRule,
    expense: ExpenseSnapshot,
    directory: Directory,
    default_escalation_hours: int = DEFAULT_ESCALATION_HOURS,
) -> ConcretePlan:
    """Build the concrete approval plan for an expense.

    Args:
        rule: The matched rule.
        expense: Expense attributes (amount in base currency).
        directory: Directory collaborator for identity resolution.
        default_escalation_hours: Window used when the rule enables
            escalation without ``after_hours``.

    Returns:
        ConcretePlan; zero levels and ``auto_approved=True`` when the
        auto-approval shortcut applies.

    Raises:
        PlanningError: see module docstring.
    """
    workflow_type = rule.workflow.workflow_type

    applies, reason = auto_approval_applies(rule, expense)
    if applies:
        return ConcretePlan(
            rule_id=rule.rule_id,
            workflow_type=workflow_type,
            levels=(),
            auto_approved=True,
            auto_approval_reason=reason,
        )

    levels = tuple(
        _plan_level(rule, level, expense, directory, default_escalation_hours)
        for level in rule.workflow.levels
    )
    return ConcretePlan(
        rule_id=rule.rule_id,
        workflow_type=workflow_type,
        levels=levels,
    )


def _plan_level(
    rule: ApprovalRule,
    level: ApprovalLevel,
    expense: ExpenseSnapshot,
    directory: Directory,
    default_escalation_hours: int,
) -> PlannedLevel:
    resolved: dict[str, ResolvedApprover] = {}

    for spec in level.approvers:
        identity = _resolve_spec(rule, level.level, spec, expense, directory)
        if identity is None:
            continue
        existing = resolved.get(identity.user_id)
        if existing is None:
            resolved[identity.user_id] = ResolvedApprover(
                user_id=identity.user_id,
                role=spec.role,
                is_required=spec.is_required,
            )
        elif spec.is_required and not existing.is_required:
            resolved[identity.user_id] = ResolvedApprover(
                user_id=existing.user_id,
                role=existing.role,
                is_required=True,
            )

    if not resolved:
        raise PlanningError(
            PlanningReason.EMPTY_LEVEL,
            "no approver could be resolved",
            level=level.level,
            rule_id=rule.rule_id,
        )

    threshold = level.threshold
    if threshold.threshold_type == ThresholdType.COUNT and threshold.value > len(resolved):
        raise PlanningError(
            PlanningReason.UNSATISFIABLE_LEVEL,
            f"count threshold {threshold.value} exceeds "
            f"{len(resolved)} distinct approver(s)",
            level=level.level,
            rule_id=rule.rule_id,
        )

    hours, target_spec = _escalation_settings(rule, level, default_escalation_hours)
    target: Identity | None = None
    if target_spec is not None:
        target = _resolve_spec(
            rule, level.level, target_spec, expense, directory, always_required=True,
        )

    return PlannedLevel(
        level=level.level,
        approvers=tuple(resolved.values()),
        threshold=threshold,
        condition=level.condition if rule.workflow.workflow_type == WorkflowType.CONDITIONAL else None,
        escalation_hours=hours,
        escalation_target=target,
        escalation_role=target_spec.role if target_spec is not None else None,
    )


def _escalation_settings(
    rule: ApprovalRule,
    level: ApprovalLevel,
    default_escalation_hours: int,
) -> tuple[int | None, ApproverSpec | None]:
    """Per-level time limit wins over the rule-wide escalation policy."""
    policy = rule.escalation if rule.escalation is not None and rule.escalation.enabled else None

    if level.time_limit is not None:
        target = level.time_limit.escalate_to
        if target is None and policy is not None:
            target = policy.escalate_to
        return level.time_limit.hours, target

    if policy is not None:
        return policy.after_hours or default_escalation_hours, policy.escalate_to

    return None, None


def _resolve_spec(
    rule: ApprovalRule,
    level_number: int,
    spec: ApproverSpec,
    expense: ExpenseSnapshot,
    directory: Directory,
    always_required: bool = False,
) -> Identity | None:
    """Resolve one slot.  Optional slots that cannot be resolved are dropped."""
    is_specific = spec.role == ApproverRole.SPECIFIC_USER
    reason = (
        PlanningReason.UNRESOLVED_APPROVER if is_specific
        else PlanningReason.NO_HOLDER_FOR_ROLE
    )
    subject = spec.user_id if is_specific else f"{spec.role.value} of {expense.submitter_id}"
    detail = ""
    cause: Exception | None = None

    try:
        if is_specific:
            identity = directory.resolve_user(spec.user_id)
        else:
            identity = directory.resolve_role_holder(expense.submitter_id, spec.role)
    except DirectoryLookupError as e:
        identity = None
        detail = f"directory lookup failed for {subject}: {e.reason}"
        cause = e

    if identity is not None and not identity.is_active:
        detail = f"{subject} is inactive"
        identity = None
    elif identity is None and not detail:
        detail = f"{subject} not found"

    if identity is not None:
        return identity

    if spec.is_required or always_required:
        raise PlanningError(
            reason, detail, level=level_number, rule_id=rule.rule_id,
        ) from cause

    logger.warning(
        "optional_approver_dropped",
        extra={
            "rule_id": rule.rule_id,
            "approval_level": level_number,
            "approver_role": spec.role.value,
            "detail": detail,
        },
    )
    return None
