"""
Pure domain layer.

This module contains pure value objects and collaborator protocols
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock reads (except the injectable Clock implementations)
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalDecision,
    ApprovalLevel,
    ApprovalRule,
    ApprovalStatus,
    ApprovalThreshold,
    ApproverRole,
    ApproverSpec,
    AuditEvent,
    AuditEventType,
    AutoApprovalConditions,
    Command,
    CommandKind,
    ConcretePlan,
    Delegation,
    DelegationPolicy,
    EscalationPolicy,
    ExpenseApprovalState,
    ExpenseSnapshot,
    Identity,
    LevelOutcome,
    LevelState,
    LevelStatus,
    LevelTimeLimit,
    PlannedLevel,
    PlanResult,
    PlanResultKind,
    ResolvedApprover,
    ResponseRecord,
    RuleConditions,
    ThresholdType,
    TimeoutRequest,
    Transition,
    WorkflowDefinition,
    WorkflowType,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.collaborators import (
    AuditSink,
    CurrencyConverter,
    Directory,
    Scheduler,
)

__all__ = [
    "APPROVAL_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalDecision",
    "ApprovalLevel",
    "ApprovalRule",
    "ApprovalStatus",
    "ApprovalThreshold",
    "ApproverRole",
    "ApproverSpec",
    "AuditEvent",
    "AuditEventType",
    "AuditSink",
    "AutoApprovalConditions",
    "Clock",
    "Command",
    "CommandKind",
    "ConcretePlan",
    "CurrencyConverter",
    "Delegation",
    "DelegationPolicy",
    "DeterministicClock",
    "Directory",
    "EscalationPolicy",
    "ExpenseApprovalState",
    "ExpenseSnapshot",
    "Identity",
    "LevelOutcome",
    "LevelState",
    "LevelStatus",
    "LevelTimeLimit",
    "PlannedLevel",
    "PlanResult",
    "PlanResultKind",
    "ResolvedApprover",
    "ResponseRecord",
    "RuleConditions",
    "Scheduler",
    "SystemClock",
    "ThresholdType",
    "TimeoutRequest",
    "Transition",
    "WorkflowDefinition",
    "WorkflowType",
]
