"""
approval_engines.conditions -- Conditional-workflow level predicates.

Responsibility:
    Evaluate the activation predicate of a level in a ``conditional``
    workflow against the expense and the outcomes of earlier levels.
    A predicate that evaluates false skips the level.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Expressions are
    validated at rule-save time by ``approval_config.guard_ast``; this
    module only walks the same restricted node set.

Expression language:
    - ``expense.<field>`` -- submitter_id, amount, currency, category,
      department, submitter_role
    - ``levels[<n>]`` -- outcome of earlier level n ("approved",
      "skipped"), None when the level has not resolved
    - comparisons, and/or/not, + - * /, abs(), len(), literals, lists,
      ternaries

Failure modes:
    - ConfigurationIntegrityError for syntax errors or node types outside
      the restricted set (validation should have caught them).
    - ConfigurationIntegrityError, logged at error, when evaluation fails
      at runtime (e.g. ``None < 5`` or Decimal times float).  The level
      is never skipped on a failed predicate.
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Mapping
from typing import Any

from approval_kernel.exceptions import ConfigurationIntegrityError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.conditions")

CONTEXT_ROOTS: frozenset[str] = frozenset({"expense", "levels"})

_FUNCTIONS = {"abs": abs, "len": len}

_COMPARE = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}


def build_condition_context(
    expense: Mapping[str, Any],
    level_outcomes: Mapping[int, str],
) -> dict[str, Any]:
    """Assemble the evaluation context for a level predicate."""
    return {"expense": dict(expense), "levels": dict(level_outcomes)}


def evaluate_condition(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate a level predicate; True means the level is activated."""
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ConfigurationIntegrityError(
            f"condition {expression!r}", f"syntax error: {e.msg}",
        ) from e

    try:
        return bool(_eval(tree.body, context, expression))
    except (TypeError, ArithmeticError) as e:
        logger.error(
            "condition_evaluation_failed",
            extra={"expression": expression, "error": str(e)},
        )
        raise ConfigurationIntegrityError(f"condition {expression!r}", str(e)) from e


def _eval(node: ast.AST, context: Mapping[str, Any], expression: str) -> Any:
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _eval(value, context, expression)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _eval(value, context, expression)
            if result:
                return result
        return result

    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, context, expression)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        _reject(node.op, expression)

    if isinstance(node, ast.Compare):
        left = _eval(node.left, context, expression)
        for op, comparator in zip(node.ops, node.comparators):
            fn = _COMPARE.get(type(op))
            if fn is None:
                _reject(op, expression)
            right = _eval(comparator, context, expression)
            if not fn(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.BinOp):
        fn = _BINARY.get(type(node.op))
        if fn is None:
            _reject(node.op, expression)
        return fn(
            _eval(node.left, context, expression),
            _eval(node.right, context, expression),
        )

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            _reject(node, expression)
        args = [_eval(arg, context, expression) for arg in node.args]
        return _FUNCTIONS[node.func.id](*args)

    if isinstance(node, ast.Attribute):
        if not (isinstance(node.value, ast.Name) and node.value.id in CONTEXT_ROOTS):
            _reject(node, expression)
        root = context.get(node.value.id) or {}
        return root.get(node.attr)

    if isinstance(node, ast.Subscript):
        if not (isinstance(node.value, ast.Name) and node.value.id in CONTEXT_ROOTS):
            _reject(node, expression)
        root = context.get(node.value.id) or {}
        return root.get(_eval(node.slice, context, expression))

    if isinstance(node, ast.Name):
        if node.id not in CONTEXT_ROOTS:
            _reject(node, expression)
        return context.get(node.id)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval(elt, context, expression) for elt in node.elts]

    if isinstance(node, ast.IfExp):
        if _eval(node.test, context, expression):
            return _eval(node.body, context, expression)
        return _eval(node.orelse, context, expression)

    _reject(node, expression)


def _reject(node: ast.AST, expression: str) -> None:
    raise ConfigurationIntegrityError(
        f"condition {expression!r}",
        f"disallowed expression element: {type(node).__name__}",
    )
