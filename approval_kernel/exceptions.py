"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the approval engine (request handlers, schedulers, batch jobs)
must react to failures by type, not by parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    result = service.submit_for_approval(expense_id, expense, rules)
    if result.error is not None:
        api_response(code=result.error.code, reason=result.error.reason.value)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalEngineError:

    ApprovalEngineError (base)
    |
    +-- PlanningError                 (reason: PlanningReason)
    |
    +-- CollaboratorError
    |   +-- ConversionFailedError
    |   +-- DirectoryLookupError
    |
    +-- ConfigurationError
    |   +-- ConfigurationIntegrityError
    |   +-- RuleValidationError
    |
    +-- ApprovalStateError
    |   +-- ExpenseNotFoundError
    |   +-- DuplicateSubmissionError
    |   +-- DelegationError
    |
    +-- AuditError
        +-- AuditChainBrokenError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Planning        | PLANNING_ERROR              | Submission cannot be put into review
----------------|-----------------------------|-----------------------------------------
Collaborator    | CONVERSION_FAILED           | Rate lookup failed for a currency pair
                | DIRECTORY_LOOKUP_FAILED     | Directory backend failed (not NotFound)
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_INTEGRITY     | Invalid threshold met at evaluation time
                | RULE_VALIDATION_FAILED      | Rule rejected at save/load time
----------------|-----------------------------|-----------------------------------------
State           | EXPENSE_NOT_FOUND           | Unknown expense id
                | DUPLICATE_SUBMISSION        | Expense already in review
                | DELEGATION_REJECTED         | Delegation not permitted
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
                | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an audit row

Invalid transitions (responses on inactive levels, non-member approvers,
late responses after a terminal outcome) are deliberately NOT exceptions:
they are expected under duplicate delivery and resolve to silent no-ops.
"""

from __future__ import annotations

from enum import Enum


class ApprovalEngineError(Exception):
    """
    Base exception for all approval engine errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_ENGINE_ERROR"


# Planning


class PlanningReason(str, Enum):
    """Why a submission could not be planned."""

    UNRESOLVED_APPROVER = "unresolved_approver"
    NO_HOLDER_FOR_ROLE = "no_holder_for_role"
    EMPTY_LEVEL = "empty_level"
    NO_MATCHING_RULE = "no_matching_rule"
    UNSATISFIABLE_LEVEL = "unsatisfiable_level"
    CONVERSION_FAILED = "conversion_failed"


class PlanningError(ApprovalEngineError):
    """The expense could not be turned into a concrete approval plan.

    Planning is all-or-nothing: when this is raised no state exists for
    the expense.
    """

    code: str = "PLANNING_ERROR"

    def __init__(
        self,
        reason: PlanningReason,
        detail: str = "",
        level: int | None = None,
        rule_id: str | None = None,
    ):
        self.reason = reason
        self.detail = detail
        self.level = level
        self.rule_id = rule_id
        where = f" (level {level})" if level is not None else ""
        super().__init__(f"Planning failed: {reason.value}{where}: {detail}")


# Collaborator failures


class CollaboratorError(ApprovalEngineError):
    """Base exception for failures raised by injected collaborators."""

    code: str = "COLLABORATOR_ERROR"


class ConversionFailedError(CollaboratorError):
    """The currency converter could not convert an amount."""

    code: str = "CONVERSION_FAILED"

    def __init__(self, from_currency: str, to_currency: str, reason: str = ""):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        super().__init__(
            f"Cannot convert {from_currency} to {to_currency}"
            + (f": {reason}" if reason else "")
        )


class DirectoryLookupError(CollaboratorError):
    """The directory backend failed while resolving an identity."""

    code: str = "DIRECTORY_LOOKUP_FAILED"

    def __init__(self, subject: str, reason: str = ""):
        self.subject = subject
        self.reason = reason
        super().__init__(
            f"Directory lookup failed for {subject}"
            + (f": {reason}" if reason else "")
        )


# Configuration


class ConfigurationError(ApprovalEngineError):
    """Base exception for rule configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class ConfigurationIntegrityError(ConfigurationError):
    """A rule that should have been validated at save time is invalid.

    Raised at evaluation time; never silently coerced.
    """

    code: str = "CONFIGURATION_INTEGRITY"

    def __init__(self, subject: str, reason: str):
        self.subject = subject
        self.reason = reason
        super().__init__(f"Configuration integrity violation in {subject}: {reason}")


class RuleValidationError(ConfigurationError):
    """One or more rules failed save-time validation."""

    code: str = "RULE_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"Rule validation failed with {len(self.errors)} error(s): "
            + "; ".join(self.errors)
        )


# Approval state


class ApprovalStateError(ApprovalEngineError):
    """Base exception for approval state registry errors."""

    code: str = "APPROVAL_STATE_ERROR"


class ExpenseNotFoundError(ApprovalStateError):
    """No approval state exists for the expense id."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"No approval state for expense {expense_id}")


class DuplicateSubmissionError(ApprovalStateError):
    """The expense is already under review."""

    code: str = "DUPLICATE_SUBMISSION"

    def __init__(self, expense_id: str, status: str):
        self.expense_id = expense_id
        self.status = status
        super().__init__(
            f"Expense {expense_id} is already submitted (status={status})"
        )


class DelegationError(ApprovalStateError):
    """A delegation request is not permitted by the rule or directory."""

    code: str = "DELEGATION_REJECTED"

    def __init__(self, expense_id: str, approver_id: str, reason: str):
        self.expense_id = expense_id
        self.approver_id = approver_id
        self.reason = reason
        super().__init__(
            f"Delegation by {approver_id} on expense {expense_id} rejected: {reason}"
        )


# Audit


class AuditError(ApprovalEngineError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, expense_id: str, sequence: int, expected_hash: str, actual_hash: str):
        self.expense_id = expense_id
        self.sequence = sequence
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken for expense {expense_id} at seq {sequence}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(AuditError):
    """Attempted modification of an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")
