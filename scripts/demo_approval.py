#!/usr/bin/env python3
"""
Approval scenarios against the bundled rule set.

Loads approval_config/sets/default_rules.yaml, wires ApprovalService to an
in-memory org chart, a deterministic clock and the SQLAlchemy audit sink,
and walks four expenses through their workflows:

  - small meal         (auto-approved)
  - large expense      (manager approves, CFO rejects)
  - travel committee   (parallel levels, percentage threshold)
  - stalled expense    (escalation, then stall)

Every audit trail is printed and its hash chain verified.

Usage:
    python3 scripts/demo_approval.py
    python3 scripts/demo_approval.py --config engine.yaml   # EngineSettings file
    python3 scripts/demo_approval.py --logs                 # JSON logs on stderr
"""

import argparse
import logging
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import DEFAULT_RULES_PATH, get_settings, load_rules  # noqa: E402
from approval_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import (  # noqa: E402
    ApprovalDecision,
    ApproverRole,
    ExpenseSnapshot,
)
from approval_kernel.domain.clock import DeterministicClock  # noqa: E402
from approval_kernel.logging_config import configure_logging  # noqa: E402
from approval_kernel.services.audit_sink import SqlAlchemyAuditSink  # noqa: E402
from approval_kernel.services.directory import InMemoryDirectory  # noqa: E402
from approval_kernel.services.scheduler import InMemoryScheduler  # noqa: E402
from approval_services.approval_service import ApprovalService  # noqa: E402

APPROVE = ApprovalDecision.APPROVE
REJECT = ApprovalDecision.REJECT


def build_directory() -> InMemoryDirectory:
    d = InMemoryDirectory()
    d.add_user("ceo-1", "Chief Executive")
    d.add_user("cfo-1", "Chief Financial Officer", manager_id="ceo-1")
    d.add_user("head-eng", "Head of Engineering", manager_id="ceo-1", department="engineering")
    d.add_user("mgr-1", "Engineering Manager", manager_id="head-eng", department="engineering")
    d.add_user("emp-1", "Engineer One", manager_id="mgr-1", department="engineering")
    for n in (1, 2, 3):
        d.add_user(f"travel-desk-{n}", f"Travel Desk {n}")
    d.set_department_head("engineering", "head-eng")
    d.set_company_role(ApproverRole.CFO, "cfo-1")
    d.set_company_role(ApproverRole.CEO, "ceo-1")
    return d


def expense(amount: str, category: str | None = None) -> ExpenseSnapshot:
    return ExpenseSnapshot(
        submitter_id="emp-1",
        amount=amount,
        category=category,
        department="engineering",
        submitter_role="employee",
    )


def print_trail(sink: SqlAlchemyAuditSink, expense_id: str) -> None:
    for event in sink.events(expense_id):
        level = f"L{event.level}" if event.level is not None else "  "
        actor = event.actor_id or "-"
        details = ", ".join(f"{k}={v}" for k, v in sorted(event.payload.items()))
        print(f"    {event.sequence:>2} {level} {event.event_type.value:<18} {actor:<14} {details}")
    sink.verify_chain(expense_id)
    print("    chain verified")


def main() -> int:
    parser = argparse.ArgumentParser(description="Expense approval scenario demo")
    parser.add_argument("--config", help="EngineSettings YAML file")
    parser.add_argument("--logs", action="store_true", help="emit structured logs on stderr")
    args = parser.parse_args()

    settings = get_settings(args.config)
    if args.logs:
        configure_logging(level=settings.log_level)
    else:
        logging.getLogger("approval_kernel").setLevel(logging.CRITICAL)

    rules = load_rules(DEFAULT_RULES_PATH)
    print(f"Loaded {len(rules)} rules from {DEFAULT_RULES_PATH.name}")

    init_engine_from_url(settings.database_url)
    create_tables()
    sink = SqlAlchemyAuditSink(get_session_factory())
    clock = DeterministicClock()
    scheduler = InMemoryScheduler()
    service = ApprovalService.from_settings(
        settings, build_directory(), sink, scheduler=scheduler, clock=clock,
    )

    try:
        print("\n[1] Small meal, 35.00")
        result = service.submit_for_approval("exp-meal", expense("35.00", "meals"), rules)
        print(f"    result: {result.kind.value}")
        print_trail(sink, "exp-meal")

        print("\n[2] Large expense, 1200.00: manager approves, CFO rejects")
        service.submit_for_approval("exp-large", expense("1200.00"), rules)
        service.respond("exp-large", 1, "mgr-1", APPROVE, "fine by me")
        state = service.respond("exp-large", 2, "cfo-1", REJECT, "over budget")
        print(f"    status: {state.status.value}")
        print_trail(sink, "exp-large")

        print("\n[3] Travel committee, 800.00: parallel levels")
        service.submit_for_approval("exp-travel", expense("800.00", "travel"), rules)
        service.respond("exp-travel", 1, "mgr-1", APPROVE)
        service.respond("exp-travel", 2, "travel-desk-1", APPROVE)
        state = service.respond("exp-travel", 2, "travel-desk-2", APPROVE)
        print(f"    status: {state.status.value}")
        print_trail(sink, "exp-travel")

        print("\n[4] Large expense, 2400.00: the manager never responds")
        service.submit_for_approval("exp-stall", expense("2400.00"), rules)
        for _ in range(2):
            # level 1 of large-expense has a 24 hour time limit
            clock.advance_hours(24)
            for request in scheduler.due(clock.now()):
                service.escalate(request.expense_id, request.level)
        state = service.get_state("exp-stall")
        print(f"    status: {state.status.value}, active levels: {sorted(state.active_levels)}")
        print_trail(sink, "exp-stall")
    finally:
        reset_engine()

    return 0


if __name__ == "__main__":
    sys.exit(main())
