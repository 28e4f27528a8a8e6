"""
Rule Validator (``approval_config.validator``).

Responsibility
--------------
Validates approval rules at rule-save time, catching configuration that
the frozen domain types accept structurally but that would misbehave at
runtime: escalation without a target, unsafe or forward-looking level
conditions, auto-approval blocks that can never fire, duplicate rule
identifiers.

Architecture position
---------------------
**Config layer** -- save-time validation.  Called by
``approval_config.loader.load_rules`` and by any administrative tool that
edits rules.  Structural checks (threshold ranges, contiguous levels,
specific-user bindings) already run in the domain dataclasses'
``__post_init__``; this module covers cross-field semantics.

Invariants enforced
-------------------
* Rule id uniqueness -- duplicate ``rule_id`` values are errors.
* Condition safety -- every level condition must pass the restricted AST
  validator (``guard_ast.py``) and may only read earlier levels.
* Escalation completeness -- an enabled escalation policy names a target.

Failure modes
-------------
* Validation errors (``RuleValidationResult.errors``)  -> the rule MUST
  NOT be saved.
* Validation warnings (``RuleValidationResult.warnings``)  -> the rule may
  be saved but should be reviewed.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from approval_config.guard_ast import referenced_levels, validate_condition_expression
from approval_kernel.domain.approval import ApprovalRule, WorkflowType


@dataclass
class RuleValidationResult:
    """
    Result of rule validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block saving but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: RuleValidationResult) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def validate_rule(rule: ApprovalRule) -> RuleValidationResult:
    """Validate one rule.  Messages are prefixed with the rule id."""
    result = RuleValidationResult()
    prefix = f"rule {rule.rule_id}"

    if not rule.rule_id.strip():
        result.add_error("rule has an empty rule_id")
    if not rule.name.strip():
        result.add_error(f"{prefix}: name is empty")

    _validate_levels(rule, prefix, result)
    _validate_policies(rule, prefix, result)
    return result


def validate_rules(rules: Iterable[ApprovalRule]) -> RuleValidationResult:
    """Validate a whole rule set, including cross-rule checks."""
    rules = list(rules)
    result = RuleValidationResult()

    for rule in rules:
        result.merge(validate_rule(rule))

    counts = Counter(rule.rule_id for rule in rules)
    for rule_id, count in sorted(counts.items()):
        if count > 1:
            result.add_error(f"duplicate rule_id {rule_id!r} ({count} rules)")

    ties = Counter(
        (rule.priority, rule.created_at) for rule in rules if rule.is_active
    )
    for (priority, created_at), count in sorted(ties.items(), key=lambda kv: str(kv[0])):
        if count > 1:
            result.add_warning(
                f"{count} active rules share priority {priority} and creation time "
                f"{created_at}; ties are broken by rule_id"
            )

    return result


def _validate_levels(rule: ApprovalRule, prefix: str, result: RuleValidationResult) -> None:
    workflow = rule.workflow
    conditional = workflow.workflow_type == WorkflowType.CONDITIONAL

    for level in workflow.levels:
        where = f"{prefix}, level {level.level}"

        seen = set()
        for spec in level.approvers:
            key = (spec.role, spec.user_id)
            if key in seen:
                result.add_warning(
                    f"{where}: approver {spec.role.value}"
                    f"{' ' + spec.user_id if spec.user_id else ''} listed twice"
                )
            seen.add(key)

        if level.condition is None:
            continue
        if not conditional:
            result.add_warning(
                f"{where}: condition is ignored for {workflow.workflow_type.value} workflows"
            )
            continue

        errors = validate_condition_expression(level.condition)
        for error in errors:
            result.add_error(f"{where}: condition {level.condition!r}: {error.message}")
        if errors:
            continue

        for referenced in sorted(referenced_levels(level.condition)):
            if referenced >= level.level:
                result.add_error(
                    f"{where}: condition reads levels[{referenced}], "
                    "which has not resolved yet"
                )

    for level in workflow.levels:
        if level.time_limit is None or level.time_limit.escalate_to is not None:
            continue
        policy = rule.escalation
        if policy is None or not policy.enabled or policy.escalate_to is None:
            result.add_warning(
                f"{prefix}, level {level.level}: time limit has no escalation target; "
                "the level stalls when it expires"
            )


def _validate_policies(rule: ApprovalRule, prefix: str, result: RuleValidationResult) -> None:
    escalation = rule.escalation
    if escalation is not None and escalation.enabled:
        if escalation.escalate_to is None:
            result.add_error(f"{prefix}: escalation is enabled without escalate_to")
        if escalation.after_hours is None:
            result.add_warning(
                f"{prefix}: escalation has no after_hours; the engine default applies"
            )

    auto = rule.auto_approval
    if auto is not None and auto.enabled:
        if not auto.has_conditions:
            result.add_warning(
                f"{prefix}: auto-approval is enabled without conditions and never applies"
            )
        if auto.max_amount is not None and auto.max_amount <= 0:
            result.add_error(
                f"{prefix}: auto-approval max_amount must be positive, got {auto.max_amount}"
            )
        if (
            auto.max_amount is not None
            and rule.conditions.max_amount is not None
            and auto.max_amount > rule.conditions.max_amount
        ):
            result.add_warning(
                f"{prefix}: auto-approval max_amount {auto.max_amount} exceeds the "
                f"rule's own max_amount {rule.conditions.max_amount}"
            )

    delegation = rule.delegation
    if delegation is not None and delegation.allow_self_delegation and not delegation.enabled:
        result.add_warning(
            f"{prefix}: allow_self_delegation has no effect while delegation is disabled"
        )
