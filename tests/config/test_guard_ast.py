"""Tests for the restricted condition expression validator."""

import pytest

from approval_config.guard_ast import referenced_levels, validate_condition_expression


class TestValidateConditionExpression:

    @pytest.mark.parametrize(
        "expression",
        [
            "expense.amount >= 500",
            "expense.category in ['travel', 'meals'] and not expense.department == 'sales'",
            "levels[1] == 'approved' or levels[2] == 'skipped'",
            "abs(expense.amount - 100) < 50",
            "len(expense.submitter_id) > 3",
            "expense.submitter_role is not None",
            "-expense.amount < 0",
            "1 if expense.amount > 5 else 0",
        ],
    )
    def test_valid(self, expression):
        assert validate_condition_expression(expression) == []

    @pytest.mark.parametrize(
        "expression,fragment",
        [
            ("__import__('os')", "Disallowed function call"),
            ("expense.amount.real > 1", "Disallowed attribute access"),
            ("expense.salary > 1", "Unknown expense field"),
            ("os.environ", "Disallowed attribute access"),
            ("secret == 1", "Disallowed name"),
            ("levels['one'] == 'approved'", "Disallowed subscript"),
            ("levels[True] == 'approved'", "Disallowed subscript"),
            ("expense.amount ** 2 > 1", "Disallowed binary operator"),
            ("~expense.amount", "Disallowed unary operator"),
            ("len(x=expense.category)", "Disallowed function call"),
            ("lambda: True", "Lambda"),
            ("[x for x in levels]", "Disallowed AST node type"),
            ("expense.amount >=", "Syntax error"),
        ],
    )
    def test_rejected(self, expression, fragment):
        errors = validate_condition_expression(expression)

        assert errors
        assert any(fragment in e.message for e in errors)

    def test_errors_carry_position(self):
        (error,) = validate_condition_expression("expense.amount > 1 and secret")

        assert error.node_type == "Name"
        assert error.col_offset > 0


class TestReferencedLevels:

    def test_collects_level_numbers(self):
        assert referenced_levels("levels[1] == 'approved' and levels[3] is None") == {1, 3}

    def test_none_referenced(self):
        assert referenced_levels("expense.amount > 1") == set()
