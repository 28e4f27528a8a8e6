"""
approval_engines.threshold -- Pure level threshold evaluation.

Responsibility:
    Decide whether one approval level is approved, rejected, or still
    pending, given the responses received so far and the level's
    threshold policy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and exceptions.

Invariants enforced (in order of precedence):
    1. A ``reject`` from a required approver rejects the level at once.
    2. Counts use distinct approvers; only level members are counted.
    3. ``all``: every required approver approved (every approver when the
       level has no required approvers).
    4. ``majority``: approvals * 2 > total.
    5. ``percentage``: approvals * 100 >= value * total (integer math).
    6. ``count``: approvals >= value.
    7. ``any``: approvals >= 1.
    8. Unmet with responses outstanding -> pending; unmet with everyone
       responded -> rejected (silence exhaustion is a rejection).

Failure modes:
    - ConfigurationIntegrityError when the threshold value is out of
      range for the level at evaluation time.  Logged, never coerced.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ApprovalDecision,
    LevelOutcome,
    PlannedLevel,
    ResponseRecord,
    ThresholdType,
)
from approval_kernel.exceptions import ConfigurationIntegrityError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.threshold")


@dataclass(frozen=True)
class LevelTally:
    """Distinct-approver counts for one level."""

    approved: int
    rejected: int
    responded: int
    total: int


def latest_decisions(
    level: PlannedLevel,
    responses: Iterable[ResponseRecord],
) -> dict[str, ApprovalDecision]:
    """Last decision per member approver; non-members are ignored."""
    members = set(level.approver_ids)
    decisions: dict[str, ApprovalDecision] = {}
    for response in responses:
        if response.approver_id in members:
            decisions[response.approver_id] = response.decision
    return decisions


def tally_responses(
    level: PlannedLevel,
    responses: Iterable[ResponseRecord],
) -> LevelTally:
    decisions = latest_decisions(level, responses)
    approved = sum(1 for d in decisions.values() if d == ApprovalDecision.APPROVE)
    return LevelTally(
        approved=approved,
        rejected=len(decisions) - approved,
        responded=len(decisions),
        total=len(level.approvers),
    )


@traced_engine("threshold", "1.0", fingerprint_fields=("level",))
def evaluate_level(
    level: PlannedLevel,
    responses: Iterable[ResponseRecord],
) -> LevelOutcome:
    """Evaluate one level's responses against its threshold.

    Args:
        level: The planned level (approvers include escalation additions).
        responses: Responses recorded for this level, in arrival order.

    Returns:
        LevelOutcome.APPROVED, REJECTED or PENDING.
    """
    _check_integrity(level)
    decisions = latest_decisions(level, responses)
    required = level.required_ids

    # 1. required rejection short-circuits
    for approver_id, decision in decisions.items():
        if decision == ApprovalDecision.REJECT and approver_id in required:
            return LevelOutcome.REJECTED

    # 2. distinct approvals
    approved = sum(1 for d in decisions.values() if d == ApprovalDecision.APPROVE)
    total = len(level.approvers)

    if _threshold_met(level, decisions, approved, total):
        return LevelOutcome.APPROVED

    # 8. silence exhaustion
    if len(decisions) < total:
        return LevelOutcome.PENDING
    return LevelOutcome.REJECTED


def _threshold_met(
    level: PlannedLevel,
    decisions: dict[str, ApprovalDecision],
    approved: int,
    total: int,
) -> bool:
    threshold = level.threshold
    kind = threshold.threshold_type

    if kind == ThresholdType.ALL:
        must_approve = level.required_ids or frozenset(level.approver_ids)
        return all(
            decisions.get(approver_id) == ApprovalDecision.APPROVE
            for approver_id in must_approve
        )
    if kind == ThresholdType.MAJORITY:
        return approved * 2 > total
    if kind == ThresholdType.PERCENTAGE:
        return approved * 100 >= threshold.value * total
    if kind == ThresholdType.COUNT:
        return approved >= threshold.value
    if kind == ThresholdType.ANY:
        return approved >= 1

    raise ConfigurationIntegrityError(f"level {level.level}", f"unknown threshold {kind!r}")


def _check_integrity(level: PlannedLevel) -> None:
    """Reject thresholds that rule-save validation should have caught."""
    threshold = level.threshold
    total = len(level.approvers)
    reason: str | None = None

    if total == 0:
        reason = "level has no approvers"
    elif threshold.threshold_type == ThresholdType.PERCENTAGE:
        if threshold.value is None or not 1 <= threshold.value <= 100:
            reason = f"percentage value {threshold.value!r} outside 1..100"
    elif threshold.threshold_type == ThresholdType.COUNT:
        if threshold.value is None or not 1 <= threshold.value <= total:
            reason = f"count value {threshold.value!r} outside 1..{total}"

    if reason is not None:
        logger.error(
            "threshold_integrity_violation",
            extra={
                "approval_level": level.level,
                "threshold_type": threshold.threshold_type.value,
                "threshold_value": threshold.value,
                "approver_count": total,
                "reason": reason,
            },
        )
        raise ConfigurationIntegrityError(f"level {level.level}", reason)
