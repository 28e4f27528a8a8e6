"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    approval engines: threshold evaluation, rule matching, workflow
    planning, level conditions and the approval state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and exceptions (and
    sibling engine modules).  MUST NOT import approval_kernel.services,
    approval_kernel.db or approval_config.

Invariants enforced:
    - Purity: engines never read the clock.  Every transition takes the
      time as an explicit parameter; the service supplies it.
    - Decimal-only arithmetic on amounts; integer arithmetic on
      thresholds.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE records.

Usage:
    from approval_engines import select_rule, build_plan, evaluate_level
    from approval_engines import state_machine
"""

from approval_engines import state_machine
from approval_engines.conditions import build_condition_context, evaluate_condition
from approval_engines.planner import auto_approval_applies, build_plan
from approval_engines.rule_matcher import rank_rules, rule_applies, select_rule
from approval_engines.threshold import (
    LevelTally,
    evaluate_level,
    latest_decisions,
    tally_responses,
)
from approval_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "LevelTally",
    "auto_approval_applies",
    "build_condition_context",
    "build_plan",
    "compute_input_fingerprint",
    "evaluate_condition",
    "evaluate_level",
    "latest_decisions",
    "rank_rules",
    "rule_applies",
    "select_rule",
    "state_machine",
    "tally_responses",
    "traced_engine",
]
