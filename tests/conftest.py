"""
Pytest configuration and shared fixtures for the approval engine tests.

Fixtures build a small, fixed organization chart and an ``ApprovalService``
wired to in-memory collaborators and a deterministic clock, so every test
controls time and identities explicitly.  Database-backed tests use an
in-memory SQLite engine created per test.

Rule and expense builders live in ``tests/factories.py``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from io import StringIO

import pytest

from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import ApprovalRule, ApproverRole
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.audit_sink import InMemoryAuditSink, SqlAlchemyAuditSink
from approval_kernel.services.currency import StaticRateConverter
from approval_kernel.services.directory import InMemoryDirectory
from approval_kernel.services.scheduler import InMemoryScheduler
from approval_services.approval_service import ApprovalService
from tests.factories import manager_then_cfo


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.submit_for_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Collaborator fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def directory() -> InMemoryDirectory:
    """
    Org chart used across the suite.

    emp-1 and emp-2 report to mgr-1 in engineering; mgr-1 reports to
    head-eng.  cfo-1 and ceo-1 hold the company roles.  travel-desk-1..3
    are specific-user approvers.  orphan-1 has no manager and former-1
    is inactive.
    """
    d = InMemoryDirectory()
    d.add_user("ceo-1", "Chief Executive")
    d.add_user("cfo-1", "Chief Financial Officer", manager_id="ceo-1")
    d.add_user("head-eng", "Head of Engineering", manager_id="ceo-1", department="engineering")
    d.add_user("mgr-1", "Engineering Manager", manager_id="head-eng", department="engineering")
    d.add_user("emp-1", "Engineer One", manager_id="mgr-1", department="engineering")
    d.add_user("emp-2", "Engineer Two", manager_id="mgr-1", department="engineering")
    d.add_user("orphan-1", "No Manager", department="engineering")
    for n in (1, 2, 3):
        d.add_user(f"travel-desk-{n}", f"Travel Desk {n}")
    d.add_user("former-1", "Former Employee", is_active=False)
    d.set_department_head("engineering", "head-eng")
    d.set_company_role(ApproverRole.CFO, "cfo-1")
    d.set_company_role(ApproverRole.CEO, "ceo-1")
    return d


@pytest.fixture
def scheduler() -> InMemoryScheduler:
    return InMemoryScheduler()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def converter() -> StaticRateConverter:
    """EUR at 1.10 USD, GBP at 1.25 USD."""
    return StaticRateConverter({"EUR": "1.10", "GBP": "1.25"})


@pytest.fixture
def service(directory, audit_sink, scheduler, converter, deterministic_clock) -> ApprovalService:
    """ApprovalService on in-memory collaborators and a fixed clock."""
    return ApprovalService(
        directory=directory,
        audit_sink=audit_sink,
        scheduler=scheduler,
        converter=converter,
        clock=deterministic_clock,
    )


@pytest.fixture
def manager_then_cfo_rule() -> ApprovalRule:
    return manager_then_cfo()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def sqlite_session_factory() -> Generator:
    """Fresh in-memory SQLite database with the audit table created."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def sql_audit_sink(sqlite_session_factory) -> SqlAlchemyAuditSink:
    return SqlAlchemyAuditSink(sqlite_session_factory)
