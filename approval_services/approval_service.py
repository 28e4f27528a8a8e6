"""
approval_services.approval_service -- Expense approval orchestration.

Responsibility:
    The exposed facade of the approval engine.  Converts the expense to
    the base currency, selects the rule, builds the plan, and then drives
    the state machine as responses, escalation timeouts, delegations and
    cancellations arrive.  Forwards every audit event to the audit sink
    and every deadline to the scheduler.

Architecture position:
    Services -- stateful orchestration over approval_engines and
    approval_kernel.  The only layer that reads the clock, holds the
    per-expense state registry or calls collaborators.

Invariants enforced:
    - Single writer per expense: every mutation of one expense runs under
      that expense's lock, in arrival order.  Locks are per expense, never
      global, so independent expenses proceed in parallel.
    - Frozen rules: the state holds the rule snapshot it was planned
      against; later rule edits only affect new submissions.
    - Command history: every applied input is recorded, so
      ``state_machine.replay`` reconstructs the state exactly.
    - A transition's events reach the sink as one atomic batch before the
      state is stored; a failing sink stores nothing and leaves the
      previous state in place, so the same command can be retried.
    - Locks exist only for submitted expense ids.

Failure modes:
    - ExpenseNotFoundError for operations on an unknown expense.
    - DuplicateSubmissionError when the expense id already has an
      approval process.
    - DelegationError when a delegation is refused.
    - PlanningError is never raised; it is returned inside PlanResult.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING

from approval_engines import state_machine
from approval_engines.planner import DEFAULT_ESCALATION_HOURS, build_plan
from approval_engines.rule_matcher import select_rule
from approval_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalRule,
    ApprovalStatus,
    Command,
    CommandKind,
    ExpenseApprovalState,
    ExpenseSnapshot,
    PlanResult,
    PlanResultKind,
    Transition,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.collaborators import (
    AuditSink,
    CurrencyConverter,
    Directory,
    Scheduler,
)
from approval_kernel.exceptions import (
    ConversionFailedError,
    DelegationError,
    DirectoryLookupError,
    DuplicateSubmissionError,
    ExpenseNotFoundError,
    PlanningError,
    PlanningReason,
)
from approval_kernel.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from approval_config.settings import EngineSettings

logger = get_logger("services.approval_service")


class ApprovalService:
    """Owns the approval state of every submitted expense."""

    def __init__(
        self,
        directory: Directory,
        audit_sink: AuditSink,
        scheduler: Scheduler | None = None,
        converter: CurrencyConverter | None = None,
        clock: Clock | None = None,
        base_currency: str = "USD",
        default_escalation_hours: int = DEFAULT_ESCALATION_HOURS,
    ) -> None:
        self._directory = directory
        self._audit_sink = audit_sink
        self._scheduler = scheduler
        self._converter = converter
        self._clock = clock or SystemClock()
        self._base_currency = base_currency.upper()
        self._default_escalation_hours = default_escalation_hours

        self._states: dict[str, ExpenseApprovalState] = {}
        self._history: dict[str, list[Command]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        directory: Directory,
        audit_sink: AuditSink,
        scheduler: Scheduler | None = None,
        converter: CurrencyConverter | None = None,
        clock: Clock | None = None,
    ) -> ApprovalService:
        """Build a service from an ``approval_config.EngineSettings``."""
        return cls(
            directory,
            audit_sink,
            scheduler=scheduler,
            converter=converter,
            clock=clock,
            base_currency=settings.base_currency,
            default_escalation_hours=settings.default_escalation_hours,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        expense_id: str,
        expense: ExpenseSnapshot,
        rules: Iterable[ApprovalRule],
    ) -> PlanResult:
        """
        Start the approval process for an expense.

        Returns:
            PlanResult of kind APPROVED_IMMEDIATELY (auto-approval),
            IN_REVIEW (levels active) or PLANNING_ERROR (no state created).
        Raises:
            DuplicateSubmissionError: the expense id already has a process.
        """
        with LogContext.bind(expense_id=expense_id, actor_id=expense.submitter_id):
            with self._lock_for(expense_id, create=True):
                existing = self._states.get(expense_id)
                if existing is not None:
                    raise DuplicateSubmissionError(expense_id, existing.status.value)

                try:
                    expense = self._to_base_currency(expense)
                except ConversionFailedError as e:
                    return self._planning_failed(
                        expense_id,
                        PlanningError(PlanningReason.CONVERSION_FAILED, str(e)),
                    )

                rule = select_rule(expense, rules)
                if rule is None:
                    return self._planning_failed(
                        expense_id,
                        PlanningError(
                            PlanningReason.NO_MATCHING_RULE,
                            f"no active rule matches amount {expense.amount} {expense.currency}",
                        ),
                    )
                logger.info(
                    "rule_selected",
                    extra={"rule_id": rule.rule_id, "priority": rule.priority},
                )

                try:
                    plan = build_plan(
                        rule, expense, self._directory, self._default_escalation_hours,
                    )
                except PlanningError as e:
                    return self._planning_failed(expense_id, e)

                logger.info(
                    "plan_built",
                    extra={
                        "rule_id": rule.rule_id,
                        "workflow_type": plan.workflow_type.value,
                        "level_count": len(plan.levels),
                        "auto_approved": plan.auto_approved,
                    },
                )

                at = self._clock.now()
                state = state_machine.create_state(expense_id, rule, plan, expense, at)
                transition = state_machine.start(state, at)
                self._commit(transition, Command(kind=CommandKind.START, at=at))

                kind = (
                    PlanResultKind.APPROVED_IMMEDIATELY
                    if transition.state.status == ApprovalStatus.APPROVED
                    else PlanResultKind.IN_REVIEW
                )
                logger.info(
                    "approval_submitted",
                    extra={
                        "rule_id": rule.rule_id,
                        "result": kind.value,
                        "active_levels": sorted(transition.state.active_levels),
                    },
                )
                return PlanResult(kind=kind, expense_id=expense_id, state=transition.state)

    def _to_base_currency(self, expense: ExpenseSnapshot) -> ExpenseSnapshot:
        currency = expense.currency.upper()
        if currency == self._base_currency:
            return expense
        if self._converter is None:
            logger.warning(
                "currency_not_converted",
                extra={"currency": currency, "base_currency": self._base_currency},
            )
            return expense
        amount = self._converter.convert(expense.amount, currency, self._base_currency)
        logger.info(
            "amount_converted",
            extra={
                "from_currency": currency,
                "to_currency": self._base_currency,
                "original_amount": expense.amount,
                "converted_amount": amount,
            },
        )
        return replace(expense, amount=amount, currency=self._base_currency)

    def _planning_failed(self, expense_id: str, error: PlanningError) -> PlanResult:
        logger.warning(
            "planning_failed",
            extra={
                "reason": error.reason.value,
                "detail": error.detail,
                "rule_id": error.rule_id,
                "failed_level": error.level,
            },
        )
        return PlanResult(
            kind=PlanResultKind.PLANNING_ERROR,
            expense_id=expense_id,
            error=error,
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def respond(
        self,
        expense_id: str,
        level: int,
        approver_id: str,
        decision: ApprovalDecision | str,
        comment: str = "",
    ) -> ExpenseApprovalState:
        """Record an approver's (or their delegate's) decision.

        Late, duplicate or non-member responses are silent no-ops that
        return the current state.
        """
        decision = ApprovalDecision(decision)
        with LogContext.bind(
            expense_id=expense_id, actor_id=approver_id, approval_level=str(level),
        ):
            with self._lock_for(expense_id):
                state = self._require(expense_id)
                at = self._clock.now()
                transition = state_machine.record_response(
                    state, level, approver_id, decision, comment, at,
                )
                return self._commit(transition, Command(
                    kind=CommandKind.RESPOND,
                    at=at,
                    level=level,
                    approver_id=approver_id,
                    decision=decision,
                    comment=comment,
                ))

    def escalate(self, expense_id: str, level: int) -> ExpenseApprovalState:
        """Scheduler callback for a level deadline."""
        with LogContext.bind(expense_id=expense_id, approval_level=str(level)):
            with self._lock_for(expense_id):
                state = self._require(expense_id)
                at = self._clock.now()
                transition = state_machine.on_escalation_timeout(state, level, at)
                return self._commit(transition, Command(
                    kind=CommandKind.TIMEOUT, at=at, level=level,
                ))

    def cancel(
        self,
        expense_id: str,
        actor_id: str | None = None,
        reason: str = "",
    ) -> ExpenseApprovalState:
        """Withdraw an expense.  No-op when it is already terminal."""
        with LogContext.bind(expense_id=expense_id, actor_id=actor_id):
            with self._lock_for(expense_id):
                state = self._require(expense_id)
                at = self._clock.now()
                transition = state_machine.cancel(state, at, actor_id, reason)
                return self._commit(transition, Command(
                    kind=CommandKind.CANCEL, at=at, actor_id=actor_id, comment=reason,
                ))

    def delegate(
        self,
        expense_id: str,
        level: int,
        approver_id: str,
        delegate_id: str,
        valid_until: datetime | None = None,
    ) -> ExpenseApprovalState:
        """
        Let ``delegate_id`` respond in ``approver_id``'s place at a level.

        Raises:
            DelegationError: unknown or inactive delegate, or the rule's
                delegation policy refuses it.
        """
        with LogContext.bind(
            expense_id=expense_id, actor_id=approver_id, approval_level=str(level),
        ):
            with self._lock_for(expense_id):
                state = self._require(expense_id)
                try:
                    identity = self._directory.resolve_user(delegate_id)
                except DirectoryLookupError as e:
                    raise DelegationError(
                        expense_id, approver_id, f"delegate lookup failed: {e.reason}",
                    ) from e
                if identity is None or not identity.is_active:
                    raise DelegationError(
                        expense_id, approver_id,
                        f"delegate {delegate_id} is unknown or inactive",
                    )

                at = self._clock.now()
                transition = state_machine.delegate(
                    state, level, approver_id, delegate_id, at, valid_until,
                )
                return self._commit(transition, Command(
                    kind=CommandKind.DELEGATE,
                    at=at,
                    level=level,
                    approver_id=approver_id,
                    delegate_id=delegate_id,
                    valid_until=valid_until,
                ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, expense_id: str) -> ExpenseApprovalState:
        with self._lock_for(expense_id):
            return self._require(expense_id)

    def history(self, expense_id: str) -> tuple[Command, ...]:
        """Applied commands in order, replayable with ``state_machine.replay``."""
        with self._lock_for(expense_id):
            self._require(expense_id)
            return tuple(self._history[expense_id])

    def reconstruct(self, expense_id: str) -> ExpenseApprovalState:
        """Rebuild the state from its frozen plan and command history."""
        with self._lock_for(expense_id):
            state = self._require(expense_id)
            commands = tuple(self._history[expense_id])
        return state_machine.replay(
            expense_id, state.rule, state.plan, state.expense, commands,
        ).state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, expense_id: str, create: bool = False) -> threading.Lock:
        """The expense's lock; only submission may create one."""
        with self._registry_lock:
            lock = self._locks.get(expense_id)
            if lock is None:
                if not create:
                    raise ExpenseNotFoundError(expense_id)
                lock = self._locks[expense_id] = threading.Lock()
            return lock

    def _require(self, expense_id: str) -> ExpenseApprovalState:
        state = self._states.get(expense_id)
        if state is None:
            raise ExpenseNotFoundError(expense_id)
        return state

    def _commit(self, transition: Transition, command: Command) -> ExpenseApprovalState:
        """Record the transition's events as one batch, store the new
        state, then forward its timeouts.

        Caller holds the expense lock.
        """
        if not transition.applied:
            return transition.state

        state = transition.state
        self._audit_sink.record_batch(transition.events)
        for event in transition.events:
            logger.info(
                event.event_type.value,
                extra={
                    "sequence": event.sequence,
                    "event_level": event.level,
                    **event.payload,
                },
            )

        self._states[state.expense_id] = state
        self._history.setdefault(state.expense_id, []).append(command)

        if self._scheduler is not None:
            for request in transition.timeouts:
                self._scheduler.schedule_timeout(
                    request.expense_id, request.level, request.deadline,
                )

        if state.is_terminal:
            logger.info(
                "approval_resolved",
                extra={"rule_id": state.rule_id, "status": state.status.value},
            )
        return state
