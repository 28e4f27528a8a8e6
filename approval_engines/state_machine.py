"""
approval_engines.state_machine -- Approval lifecycle of one expense.

Responsibility:
    Advance an ``ExpenseApprovalState`` through its levels as responses,
    escalation timeouts, delegations and cancellations arrive, applying
    the threshold evaluator after every response.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Every function takes a
    state and returns a ``Transition`` holding the replacement state, the
    audit events it produced and the timeouts to schedule.  The caller
    (``ApprovalService``) persists, forwards and serializes.

Invariants enforced:
    - Terminal permanence: approved, rejected and cancelled states accept
      no further mutation; late inputs are silent no-ops.
    - Responses are accepted only from members (or their valid delegates)
      of a currently active level, and replace that approver's earlier
      response.
    - A rejected level rejects the expense and closes every other open
      level.
    - Sequential and conditional plans have at most one active level;
      parallel plans activate every level on start.
    - A level escalates at most once; a second timeout emits ``stalled``
      and schedules nothing.
    - Events carry a per-expense sequence that increases by one per event,
      so replaying the same commands yields identical events.

Failure modes:
    - DelegationError when a delegation violates the rule's policy.
    - ConfigurationIntegrityError propagates from the threshold evaluator
      and the condition evaluator.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from approval_engines.conditions import build_condition_context, evaluate_condition
from approval_engines.threshold import evaluate_level
from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalDecision,
    ApprovalRule,
    ApprovalStatus,
    ApproverRole,
    AuditEvent,
    AuditEventType,
    Command,
    CommandKind,
    ConcretePlan,
    Delegation,
    ExpenseApprovalState,
    ExpenseSnapshot,
    LevelOutcome,
    LevelState,
    LevelStatus,
    ResolvedApprover,
    ResponseRecord,
    TimeoutRequest,
    Transition,
    WorkflowType,
)
from approval_kernel.exceptions import DelegationError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.state_machine")

_RESOLVED_APPROVED = frozenset({LevelStatus.APPROVED, LevelStatus.SKIPPED})


class _Draft:
    """Mutable working copy used while building one transition."""

    def __init__(self, state: ExpenseApprovalState, at: datetime) -> None:
        self.original = state
        self.at = at
        self.status = state.status
        self.levels: list[LevelState] = list(state.levels)
        self.resolved_at = state.resolved_at
        self.sequence = state.sequence
        self.events: list[AuditEvent] = []
        self.timeouts: list[TimeoutRequest] = []

    def emit(
        self,
        event_type: AuditEventType,
        level: int | None = None,
        actor_id: str | None = None,
        **payload: Any,
    ) -> None:
        self.sequence += 1
        self.events.append(AuditEvent(
            expense_id=self.original.expense_id,
            sequence=self.sequence,
            event_type=event_type,
            occurred_at=self.at,
            level=level,
            actor_id=actor_id,
            payload=payload,
        ))

    def finish(self) -> Transition:
        state = replace(
            self.original,
            status=self.status,
            levels=tuple(self.levels),
            resolved_at=self.resolved_at,
            sequence=self.sequence,
        )
        return Transition(
            state=state,
            events=tuple(self.events),
            timeouts=tuple(self.timeouts),
        )


def _ignored(state: ExpenseApprovalState, operation: str, reason: str, **fields: Any) -> Transition:
    logger.debug(
        f"{operation}_ignored",
        extra={"expense_id": state.expense_id, "reason": reason, **fields},
    )
    return Transition(state=state, applied=False)


# =========================================================================
# Construction and start
# =========================================================================


def create_state(
    expense_id: str,
    rule: ApprovalRule,
    plan: ConcretePlan,
    expense: ExpenseSnapshot,
    at: datetime | None = None,
) -> ExpenseApprovalState:
    """A fresh ``pending`` state with every level waiting."""
    return ExpenseApprovalState(
        expense_id=expense_id,
        rule=rule,
        plan=plan,
        expense=expense,
        status=ApprovalStatus.PENDING,
        levels=tuple(LevelState(plan=level) for level in plan.levels),
        submitted_at=at,
    )


def start(state: ExpenseApprovalState, at: datetime) -> Transition:
    """Begin review.

    A zero-level plan approves at once; sequential and conditional plans
    activate level 1 (skipping levels whose predicate is false); parallel
    plans activate every level.
    """
    if state.status != ApprovalStatus.PENDING:
        return _ignored(state, "start", "not_pending", status=state.status.value)

    draft = _Draft(state, at)

    if not draft.levels:
        _resolve_overall(
            draft, ApprovalStatus.APPROVED,
            reason=state.plan.auto_approval_reason or "no approval levels",
        )
        return draft.finish()

    _move(draft, ApprovalStatus.IN_REVIEW)
    if state.workflow_type == WorkflowType.PARALLEL:
        for index in range(len(draft.levels)):
            _activate(draft, index)
    elif not _activate_next(draft, 0):
        _resolve_overall(draft, ApprovalStatus.APPROVED, reason="all levels skipped")

    return draft.finish()


def _activate(draft: _Draft, index: int) -> None:
    level = draft.levels[index]
    hours = level.plan.escalation_hours
    deadline = draft.at + timedelta(hours=hours) if hours else None
    draft.levels[index] = replace(
        level,
        status=LevelStatus.ACTIVE,
        activated_at=draft.at,
        deadline=deadline,
    )
    draft.emit(
        AuditEventType.LEVEL_ACTIVATED,
        level=level.level,
        approvers=list(level.plan.approver_ids),
        deadline=deadline.isoformat() if deadline else None,
    )
    if deadline is not None:
        draft.timeouts.append(TimeoutRequest(
            expense_id=draft.original.expense_id,
            level=level.level,
            deadline=deadline,
        ))


def _activate_next(draft: _Draft, index: int) -> bool:
    """Activate the first level from ``index`` whose predicate holds.

    Returns False when every remaining level was skipped.
    """
    conditional = draft.original.workflow_type == WorkflowType.CONDITIONAL
    while index < len(draft.levels):
        level = draft.levels[index]
        if conditional and level.plan.condition and not _condition_holds(draft, index):
            draft.levels[index] = replace(
                level, status=LevelStatus.SKIPPED, resolved_at=draft.at,
            )
            draft.emit(
                AuditEventType.LEVEL_RESOLVED,
                level=level.level,
                outcome=LevelStatus.SKIPPED.value,
                condition=level.plan.condition,
            )
            index += 1
            continue
        _activate(draft, index)
        return True
    return False


def _condition_holds(draft: _Draft, index: int) -> bool:
    outcomes = {
        earlier.level: earlier.status.value
        for earlier in draft.levels[:index]
        if not earlier.is_open
    }
    context = build_condition_context(draft.original.expense.as_context(), outcomes)
    return evaluate_condition(draft.levels[index].plan.condition, context)


def _move(draft: _Draft, target: ApprovalStatus) -> None:
    """Change the overall status along ``APPROVAL_TRANSITIONS`` only."""
    allowed = APPROVAL_TRANSITIONS.get(draft.status, frozenset())
    if target not in allowed:
        raise ValueError(
            f"Invalid approval transition: {draft.status.value} -> {target.value}. "
            f"Allowed: {sorted(s.value for s in allowed)}"
        )
    draft.status = target


def _resolve_overall(draft: _Draft, status: ApprovalStatus, actor_id: str | None = None, **payload: Any) -> None:
    for index, level in enumerate(draft.levels):
        if level.is_open:
            draft.levels[index] = replace(
                level, status=LevelStatus.CLOSED, resolved_at=draft.at,
            )
    _move(draft, status)
    draft.resolved_at = draft.at
    draft.emit(
        AuditEventType.OVERALL_RESOLVED,
        actor_id=actor_id,
        status=status.value,
        **payload,
    )


def _apply_outcome(draft: _Draft, index: int, actor_id: str | None = None) -> None:
    """Re-run the threshold evaluator for one level and advance the workflow."""
    level = draft.levels[index]
    outcome = evaluate_level(level.plan, level.responses)

    if outcome == LevelOutcome.PENDING:
        return

    level_status = (
        LevelStatus.APPROVED if outcome == LevelOutcome.APPROVED
        else LevelStatus.REJECTED
    )
    draft.levels[index] = replace(level, status=level_status, resolved_at=draft.at)
    draft.emit(
        AuditEventType.LEVEL_RESOLVED,
        level=level.level,
        actor_id=actor_id,
        outcome=level_status.value,
    )

    if outcome == LevelOutcome.REJECTED:
        _resolve_overall(
            draft, ApprovalStatus.REJECTED, actor_id=actor_id, rejected_level=level.level,
        )
        return

    if draft.original.workflow_type == WorkflowType.PARALLEL:
        if all(lvl.status in _RESOLVED_APPROVED for lvl in draft.levels):
            _resolve_overall(draft, ApprovalStatus.APPROVED, actor_id=actor_id)
        return

    if not _activate_next(draft, index + 1):
        _resolve_overall(draft, ApprovalStatus.APPROVED, actor_id=actor_id)


# =========================================================================
# Responses
# =========================================================================


def record_response(
    state: ExpenseApprovalState,
    level: int,
    approver_id: str,
    decision: ApprovalDecision | str,
    comment: str = "",
    at: datetime | None = None,
) -> Transition:
    """Record an approver's decision at a level.

    ``approver_id`` is whoever is responding: a member of the level, or a
    delegate holding a valid delegation from one.  A delegate's response
    is recorded under the delegating approver with ``acted_by`` set.

    Silent no-op (``applied=False``) when the state is terminal, the level
    is not active, or the responder is neither a member nor a delegate.
    """
    decision = ApprovalDecision(decision)
    if at is None:
        raise ValueError("record_response requires the response time")

    if state.is_terminal:
        return _ignored(state, "response", "terminal", approval_level=level)

    level_state = state.level(level)
    if level_state is None or level_state.status != LevelStatus.ACTIVE:
        return _ignored(state, "response", "level_not_active", approval_level=level)

    if level_state.plan.is_member(approver_id):
        on_behalf_of = approver_id
    else:
        on_behalf_of = _delegating_approver(level_state, approver_id, at)
        if on_behalf_of is None:
            return _ignored(
                state, "response", "not_a_member",
                approval_level=level, actor_id=approver_id,
            )

    record = ResponseRecord(
        approver_id=on_behalf_of,
        decision=decision,
        comment=comment,
        responded_at=at,
        acted_by=approver_id,
    )
    replaced = level_state.response_of(on_behalf_of) is not None
    if replaced:
        responses = tuple(
            record if r.approver_id == on_behalf_of else r
            for r in level_state.responses
        )
    else:
        responses = level_state.responses + (record,)

    draft = _Draft(state, at)
    index = level - 1
    draft.levels[index] = replace(level_state, responses=responses)
    draft.emit(
        AuditEventType.RESPONSE_RECORDED,
        level=level,
        actor_id=approver_id,
        approver_id=on_behalf_of,
        decision=decision.value,
        comment=comment,
        replaced=replaced,
    )
    _apply_outcome(draft, index, actor_id=approver_id)
    return draft.finish()


def _delegating_approver(level_state: LevelState, delegate_id: str, at: datetime) -> str | None:
    for delegation in level_state.delegations:
        if delegation.delegate_id == delegate_id and delegation.is_valid_at(at):
            return delegation.approver_id
    return None


# =========================================================================
# Escalation
# =========================================================================


def on_escalation_timeout(
    state: ExpenseApprovalState,
    level: int,
    at: datetime,
) -> Transition:
    """Handle the scheduler's callback for a level deadline.

    First timeout past the deadline: the escalation target joins the
    level as a required approver, the deadline is reset once, and an
    ``escalated`` event is emitted.  Second timeout: ``stalled`` and no
    new deadline.  Early, unknown-level and unconfigured timeouts are
    no-ops.
    """
    if state.is_terminal:
        return _ignored(state, "timeout", "terminal", approval_level=level)

    level_state = state.level(level)
    if level_state is None or level_state.status != LevelStatus.ACTIVE:
        return _ignored(state, "timeout", "level_not_active", approval_level=level)
    if level_state.deadline is None:
        return _ignored(state, "timeout", "no_deadline", approval_level=level)
    if at < level_state.deadline:
        return _ignored(state, "timeout", "before_deadline", approval_level=level)

    draft = _Draft(state, at)
    index = level - 1
    planned = level_state.plan
    target = planned.escalation_target

    if level_state.escalated or target is None:
        draft.levels[index] = replace(level_state, deadline=None)
        draft.emit(
            AuditEventType.STALLED,
            level=level,
            already_escalated=level_state.escalated,
            deadline=level_state.deadline.isoformat(),
        )
        return draft.finish()

    approvers = _with_escalation_target(planned.approvers, target.user_id, planned.escalation_role)
    deadline = at + timedelta(hours=planned.escalation_hours)
    draft.levels[index] = replace(
        level_state,
        plan=replace(planned, approvers=approvers),
        escalated=True,
        deadline=deadline,
    )
    draft.emit(
        AuditEventType.ESCALATED,
        level=level,
        escalated_to=target.user_id,
        new_deadline=deadline.isoformat(),
    )
    draft.timeouts.append(TimeoutRequest(
        expense_id=state.expense_id, level=level, deadline=deadline,
    ))
    _apply_outcome(draft, index)
    return draft.finish()


def _with_escalation_target(
    approvers: tuple[ResolvedApprover, ...],
    user_id: str,
    role: ApproverRole | None,
) -> tuple[ResolvedApprover, ...]:
    """Add the target as a required approver; an existing member becomes required."""
    if any(a.user_id == user_id for a in approvers):
        return tuple(
            replace(a, is_required=True) if a.user_id == user_id else a
            for a in approvers
        )
    return approvers + (ResolvedApprover(
        user_id=user_id,
        role=role,
        is_required=True,
        added_by_escalation=True,
    ),)


# =========================================================================
# Cancellation and delegation
# =========================================================================


def cancel(
    state: ExpenseApprovalState,
    at: datetime,
    actor_id: str | None = None,
    reason: str = "",
) -> Transition:
    """Withdraw the expense; every open level closes.  No-op when terminal."""
    if state.is_terminal:
        return _ignored(state, "cancel", "terminal", status=state.status.value)

    draft = _Draft(state, at)
    _resolve_overall(draft, ApprovalStatus.CANCELLED, actor_id=actor_id, reason=reason)
    return draft.finish()


def delegate(
    state: ExpenseApprovalState,
    level: int,
    approver_id: str,
    delegate_id: str,
    at: datetime,
    valid_until: datetime | None = None,
) -> Transition:
    """Let ``delegate_id`` respond in ``approver_id``'s place at a level.

    A newer delegation from the same approver replaces the earlier one.
    Terminal states, resolved levels and already-expired delegations are
    no-ops.

    Raises:
        DelegationError: delegation disabled by the rule, approver not a
            member of the level, delegation to oneself, or delegation to
            the submitter when the rule forbids it.
    """
    if state.is_terminal:
        return _ignored(state, "delegation", "terminal", approval_level=level)

    level_state = state.level(level)
    if level_state is None or not level_state.is_open:
        return _ignored(state, "delegation", "level_not_open", approval_level=level)
    if valid_until is not None and valid_until < at:
        return _ignored(state, "delegation", "expired", approval_level=level)

    policy = state.rule.delegation
    if policy is None or not policy.enabled:
        raise DelegationError(state.expense_id, approver_id, "delegation is disabled for this rule")
    if not level_state.plan.is_member(approver_id):
        raise DelegationError(state.expense_id, approver_id, f"not an approver of level {level}")
    if delegate_id == approver_id:
        raise DelegationError(state.expense_id, approver_id, "cannot delegate to oneself")
    if delegate_id == state.expense.submitter_id and not policy.allow_self_delegation:
        raise DelegationError(
            state.expense_id, approver_id, "delegation to the submitter is not allowed",
        )

    delegation = Delegation(
        approver_id=approver_id,
        delegate_id=delegate_id,
        granted_at=at,
        valid_until=valid_until,
    )
    delegations = tuple(
        d for d in level_state.delegations if d.approver_id != approver_id
    ) + (delegation,)

    draft = _Draft(state, at)
    draft.levels[level - 1] = replace(level_state, delegations=delegations)
    draft.emit(
        AuditEventType.DELEGATED,
        level=level,
        actor_id=approver_id,
        delegate_id=delegate_id,
        valid_until=valid_until.isoformat() if valid_until else None,
    )
    return draft.finish()


# =========================================================================
# Commands and replay
# =========================================================================


def apply_command(state: ExpenseApprovalState, command: Command) -> Transition:
    """Dispatch a recorded command to its transition function."""
    kind = command.kind
    if kind == CommandKind.START:
        return start(state, command.at)
    if kind == CommandKind.RESPOND:
        return record_response(
            state, command.level, command.approver_id, command.decision,
            command.comment, command.at,
        )
    if kind == CommandKind.TIMEOUT:
        return on_escalation_timeout(state, command.level, command.at)
    if kind == CommandKind.CANCEL:
        return cancel(state, command.at, command.actor_id, command.comment)
    if kind == CommandKind.DELEGATE:
        return delegate(
            state, command.level, command.approver_id, command.delegate_id,
            command.at, command.valid_until,
        )
    raise ValueError(f"Unknown command kind: {kind!r}")


def replay(
    expense_id: str,
    rule: ApprovalRule,
    plan: ConcretePlan,
    expense: ExpenseSnapshot,
    commands: Iterable[Command],
) -> Transition:
    """Apply an ordered command sequence to a fresh state.

    Returns a Transition carrying the final state and every event and
    timeout produced along the way.  ``applied`` is True when at least
    one command changed the state.
    """
    commands = tuple(commands)
    submitted_at = commands[0].at if commands else None
    state = create_state(expense_id, rule, plan, expense, submitted_at)

    events: list[AuditEvent] = []
    timeouts: list[TimeoutRequest] = []
    applied = False
    for command in commands:
        transition = apply_command(state, command)
        state = transition.state
        events.extend(transition.events)
        timeouts.extend(transition.timeouts)
        applied = applied or transition.applied

    return Transition(
        state=state,
        events=tuple(events),
        timeouts=tuple(timeouts),
        applied=applied,
    )
