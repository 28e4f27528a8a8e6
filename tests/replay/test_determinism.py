"""
Replay determinism tests.

The same frozen plan and the same command sequence must always produce
the same final state and the same audit events, byte for byte.
"""

from datetime import timedelta

from approval_engines import state_machine
from approval_engines.planner import build_plan
from approval_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalStatus,
    ApproverRole,
    Command,
    CommandKind,
    DelegationPolicy,
    EscalationPolicy,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.utils.hashing import canonicalize_json
from tests.factories import approver, make_expense, manager_then_cfo

T0 = DeterministicClock().now()


def scripted_commands():
    return (
        Command(CommandKind.START, T0),
        Command(CommandKind.TIMEOUT, T0 + timedelta(hours=6), level=1),
        Command(
            CommandKind.DELEGATE, T0 + timedelta(hours=7), level=1,
            approver_id="mgr-1", delegate_id="emp-2",
        ),
        Command(
            CommandKind.RESPOND, T0 + timedelta(hours=8), level=1,
            approver_id="emp-2", decision=ApprovalDecision.APPROVE,
        ),
        # level 2 not active yet: no-op
        Command(
            CommandKind.RESPOND, T0 + timedelta(hours=8), level=2,
            approver_id="cfo-1", decision=ApprovalDecision.APPROVE,
        ),
        Command(
            CommandKind.RESPOND, T0 + timedelta(hours=9), level=1,
            approver_id="ceo-1", decision=ApprovalDecision.APPROVE,
        ),
        Command(
            CommandKind.RESPOND, T0 + timedelta(hours=10), level=2,
            approver_id="cfo-1", decision=ApprovalDecision.APPROVE, comment="ok",
        ),
    )


def scripted_rule():
    return manager_then_cfo(
        delegation=DelegationPolicy(enabled=True),
        escalation=EscalationPolicy(enabled=True, after_hours=6, escalate_to=approver(ApproverRole.CEO)),
    )


class TestReplayDeterminism:

    def test_replay_twice_identical(self, directory):
        rule = scripted_rule()
        expense = make_expense()
        plan = build_plan(rule, expense, directory)

        first = state_machine.replay("exp-1", rule, plan, expense, scripted_commands())
        second = state_machine.replay("exp-1", rule, plan, expense, scripted_commands())

        assert first.state == second.state
        assert first.events == second.events
        assert canonicalize_json([e.to_dict() for e in first.events]) == canonicalize_json(
            [e.to_dict() for e in second.events]
        )

    def test_scripted_run_outcome(self, directory):
        rule = scripted_rule()
        expense = make_expense()
        plan = build_plan(rule, expense, directory)

        result = state_machine.replay("exp-1", rule, plan, expense, scripted_commands())

        assert result.applied
        assert result.state.status == ApprovalStatus.APPROVED
        assert result.state.resolved_at == T0 + timedelta(hours=10)
        assert [e.sequence for e in result.events] == list(range(1, len(result.events) + 1))

    def test_replay_matches_step_by_step(self, directory):
        rule = scripted_rule()
        expense = make_expense()
        plan = build_plan(rule, expense, directory)
        commands = scripted_commands()

        state = state_machine.create_state("exp-1", rule, plan, expense, commands[0].at)
        events = []
        for command in commands:
            transition = state_machine.apply_command(state, command)
            state = transition.state
            events.extend(transition.events)

        replayed = state_machine.replay("exp-1", rule, plan, expense, commands)

        assert replayed.state == state
        assert replayed.events == tuple(events)

    def test_prefix_replay_is_consistent(self, directory):
        """Replaying a prefix yields the intermediate state of the full run."""
        rule = scripted_rule()
        expense = make_expense()
        plan = build_plan(rule, expense, directory)
        commands = scripted_commands()

        prefix = state_machine.replay("exp-1", rule, plan, expense, commands[:4])
        full = state_machine.replay("exp-1", rule, plan, expense, commands)

        assert prefix.events == full.events[: len(prefix.events)]
        assert prefix.state.status == ApprovalStatus.IN_REVIEW

    def test_empty_replay(self, directory):
        rule = scripted_rule()
        expense = make_expense()
        plan = build_plan(rule, expense, directory)

        result = state_machine.replay("exp-1", rule, plan, expense, ())

        assert not result.applied
        assert result.state.status == ApprovalStatus.PENDING
