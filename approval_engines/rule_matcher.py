"""
approval_engines.rule_matcher -- Pure approval rule selection.

Responsibility:
    Select the single approval rule that applies to an expense from a
    prioritized set of conditional rules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Deterministic total order: candidates are ranked by
      (priority, created_at, rule_id); lower priority value wins, then the
      earliest-created rule, then the lexicographically smallest id.
      Rules without a creation time rank after those with one.
    - Inactive rules never match.
    - Amount range is inclusive at both ends; no maximum = unbounded.
    - Empty category/department/role/submitter sets impose no restriction.

Failure modes:
    - Returns ``None`` (NoMatch) when no active rule matches.  The caller
      decides the fallback; the engine never invents a rule.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import ApprovalRule, ExpenseSnapshot

# Sorts after every real creation time.
_NO_CREATION_TIME = datetime.max.replace(tzinfo=timezone.utc)


def rule_sort_key(rule: ApprovalRule) -> tuple:
    """Total-order key: (priority, created_at, rule_id)."""
    created = rule.created_at
    if created is None:
        created = _NO_CREATION_TIME
    elif created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (rule.priority, created, rule.rule_id)


def rank_rules(rules: Iterable[ApprovalRule]) -> list[ApprovalRule]:
    """Return rules in precedence order (highest precedence first)."""
    return sorted(rules, key=rule_sort_key)


def rule_applies(rule: ApprovalRule, expense: ExpenseSnapshot) -> bool:
    """Check whether an active rule's conditions all hold for the expense.

    ``expense.amount`` must already be in the base currency.
    """
    if not rule.is_active:
        return False

    conditions = rule.conditions
    if expense.amount < conditions.min_amount:
        return False
    if conditions.max_amount is not None and expense.amount > conditions.max_amount:
        return False

    if conditions.categories and expense.category not in conditions.categories:
        return False
    if conditions.departments and expense.department not in conditions.departments:
        return False
    if conditions.submitter_roles and expense.submitter_role not in conditions.submitter_roles:
        return False
    if conditions.submitter_ids and expense.submitter_id not in conditions.submitter_ids:
        return False

    return True


@traced_engine("rule_matcher", "1.0", fingerprint_fields=("expense",))
def select_rule(
    expense: ExpenseSnapshot,
    rules: Iterable[ApprovalRule],
) -> ApprovalRule | None:
    """Select the applicable rule, or None when nothing matches.

    Args:
        expense: Expense attributes with the amount in base currency.
        rules: Configured rules (any order; inactive rules allowed).

    Returns:
        The highest-precedence matching rule, or None.
    """
    for rule in rank_rules(rules):
        if rule_applies(rule, expense):
            return rule
    return None
