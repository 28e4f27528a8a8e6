"""
Restricted AST for level condition expressions.

Conditional workflows gate a level behind a predicate written in a
small Python subset.  This module parses and validates those
predicates when a rule is saved, rejecting anything that could execute
arbitrary code.  ``approval_engines.conditions`` evaluates the same
subset at runtime.

Allowed:
  - Comparisons: <, <=, >, >=, ==, !=, is, is not
  - Logical: and, or, not
  - Field access: expense.field_name
  - Prior level outcome: levels[<level number>]
  - Literals: numbers, strings, booleans, None
  - Arithmetic: + - * / and unary minus
  - Functions: abs(), len()
  - Membership: in, not in
  - Conditional: ternary (a if b else c)

Rejected:
  - imports, arbitrary function calls, deep attribute chains,
    lambda, eval, exec, arbitrary names
"""

import ast
from dataclasses import dataclass

from approval_engines.conditions import CONTEXT_ROOTS

ALLOWED_FUNCTIONS: frozenset[str] = frozenset({"abs", "len"})

ALLOWED_CONTEXT_ROOTS: frozenset[str] = CONTEXT_ROOTS

# Fields of expense.* that a predicate may read
EXPENSE_FIELDS: frozenset[str] = frozenset({
    "submitter_id", "amount", "currency", "category", "department", "submitter_role",
})


@dataclass(frozen=True)
class GuardASTError:
    """A validation error found in a condition expression."""

    expression: str
    message: str
    node_type: str = ""
    lineno: int = 0
    col_offset: int = 0


def validate_condition_expression(expression: str) -> list[GuardASTError]:
    """Validate a condition expression against the restricted AST.

    Returns a list of errors. Empty list means the expression is valid.
    """
    errors: list[GuardASTError] = []

    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        return [
            GuardASTError(
                expression=expression,
                message=f"Syntax error: {e.msg}",
                lineno=e.lineno or 0,
                col_offset=e.offset or 0,
            )
        ]

    _validate_node(tree.body, expression, errors)
    return errors


def referenced_levels(expression: str) -> set[int]:
    """Level numbers read through ``levels[n]`` in a valid expression."""
    found: set[int] = set()
    for node in ast.walk(ast.parse(expression.strip(), mode="eval")):
        if (
            isinstance(node, ast.Subscript)
            and isinstance(node.value, ast.Name)
            and node.value.id == "levels"
            and isinstance(node.slice, ast.Constant)
            and isinstance(node.slice.value, int)
        ):
            found.add(node.slice.value)
    return found


def _error(expression: str, message: str, node: ast.AST) -> GuardASTError:
    return GuardASTError(
        expression=expression,
        message=message,
        node_type=type(node).__name__,
        lineno=getattr(node, "lineno", 0),
        col_offset=getattr(node, "col_offset", 0),
    )


def _validate_node(
    node: ast.AST, expression: str, errors: list[GuardASTError]
) -> None:
    """Recursively validate an AST node."""

    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate_node(value, expression, errors)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.Not, ast.USub)):
            errors.append(_error(
                expression, f"Disallowed unary operator: {type(node.op).__name__}", node.op,
            ))
        _validate_node(node.operand, expression, errors)

    elif isinstance(node, ast.Compare):
        _validate_node(node.left, expression, errors)
        for comparator in node.comparators:
            _validate_node(comparator, expression, errors)
        for op in node.ops:
            if not isinstance(
                op,
                (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
                 ast.In, ast.NotIn, ast.Is, ast.IsNot),
            ):
                errors.append(_error(
                    expression, f"Disallowed comparison: {type(op).__name__}", op,
                ))

    elif isinstance(node, ast.BinOp):
        if isinstance(node.op, (ast.Add, ast.Sub, ast.Mult, ast.Div)):
            _validate_node(node.left, expression, errors)
            _validate_node(node.right, expression, errors)
        else:
            errors.append(_error(
                expression, f"Disallowed binary operator: {type(node.op).__name__}", node.op,
            ))

    elif isinstance(node, ast.Call):
        if (
            isinstance(node.func, ast.Name)
            and node.func.id in ALLOWED_FUNCTIONS
            and not node.keywords
        ):
            for arg in node.args:
                _validate_node(arg, expression, errors)
        else:
            errors.append(_error(
                expression, f"Disallowed function call: {_get_name(node.func)}", node,
            ))

    elif isinstance(node, ast.Attribute):
        if isinstance(node.value, ast.Name) and node.value.id == "expense":
            if node.attr not in EXPENSE_FIELDS:
                errors.append(_error(
                    expression,
                    f"Unknown expense field: {node.attr}. "
                    f"Allowed: {', '.join(sorted(EXPENSE_FIELDS))}.",
                    node,
                ))
        else:
            errors.append(_error(
                expression,
                f"Disallowed attribute access: {_get_name(node)}. "
                "Only expense.field_name is allowed.",
                node,
            ))

    elif isinstance(node, ast.Subscript):
        if not (
            isinstance(node.value, ast.Name)
            and node.value.id == "levels"
            and isinstance(node.slice, ast.Constant)
            and isinstance(node.slice.value, int)
            and not isinstance(node.slice.value, bool)
        ):
            errors.append(_error(
                expression,
                "Disallowed subscript. Only levels[<level number>] is allowed.",
                node,
            ))

    elif isinstance(node, ast.Name):
        if node.id not in ALLOWED_CONTEXT_ROOTS:
            errors.append(_error(expression, f"Disallowed name: {node.id}", node))

    elif isinstance(node, ast.Constant):
        if not isinstance(node.value, (int, float, str, bool, type(None))):
            errors.append(_error(
                expression,
                f"Disallowed constant type: {type(node.value).__name__}",
                node,
            ))

    elif isinstance(node, (ast.List, ast.Tuple)):
        # lists/tuples for 'in'
        for elt in node.elts:
            _validate_node(elt, expression, errors)

    elif isinstance(node, ast.IfExp):
        _validate_node(node.test, expression, errors)
        _validate_node(node.body, expression, errors)
        _validate_node(node.orelse, expression, errors)

    elif isinstance(node, ast.Lambda):
        errors.append(_error(expression, "Lambda expressions are not allowed", node))

    else:
        errors.append(_error(
            expression, f"Disallowed AST node type: {type(node).__name__}", node,
        ))


def _get_name(node: ast.AST) -> str:
    """Extract a human-readable name from an AST node."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_get_name(node.value)}.{node.attr}"
    return type(node).__name__
