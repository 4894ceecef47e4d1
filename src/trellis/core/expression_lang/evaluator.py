"""
Expression evaluator for the Trellis expression language.

Evaluates expression AST nodes against a namespace (dict of values).
Pure evaluation: no I/O, no side effects, no attribute access on arbitrary
objects. Does NOT use Python's eval(); this is a tree-walking interpreter over
a closed set of node types.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from trellis.core.ir.expressions import (
    BinaryExpr,
    BinaryOp,
    Expr,
    FieldRef,
    FuncCall,
    InExpr,
    ListExpr,
    Literal,
    ObjectExpr,
    TemplateExpr,
    UnaryExpr,
    UnaryOp,
)


class ExpressionEvalError(Exception):
    """Error during expression evaluation."""


def evaluate(expr: Expr, context: Mapping[str, Any]) -> Any:
    """Evaluate an expression against a namespace.

    Args:
        expr: Parsed expression AST.
        context: Mapping of top-level name -> value. Nested mappings are
            reachable through dotted field references.

    Returns:
        The computed value.

    Raises:
        ExpressionEvalError: If evaluation fails.
    """
    return _interpret(expr, context)


def _interpret(expr: Expr, ctx: Mapping[str, Any]) -> Any:
    """Dispatch evaluation to the appropriate handler."""
    if isinstance(expr, Literal):
        return expr.value

    if isinstance(expr, FieldRef):
        return _interpret_field_ref(expr, ctx)

    if isinstance(expr, BinaryExpr):
        return _interpret_binary(expr, ctx)

    if isinstance(expr, UnaryExpr):
        return _interpret_unary(expr, ctx)

    if isinstance(expr, FuncCall):
        return _interpret_func_call(expr, ctx)

    if isinstance(expr, InExpr):
        return _interpret_in(expr, ctx)

    if isinstance(expr, ListExpr):
        return [_interpret(item, ctx) for item in expr.items]

    if isinstance(expr, ObjectExpr):
        return {key: _interpret(value, ctx) for key, value in expr.entries}

    if isinstance(expr, TemplateExpr):
        return _interpret_template(expr, ctx)

    raise ExpressionEvalError(f"Unknown expression type: {type(expr).__name__}")


def _interpret_field_ref(expr: FieldRef, ctx: Mapping[str, Any]) -> Any:
    """Resolve a field reference. Only mapping keys are traversed."""
    current: Any = ctx
    for segment in expr.path:
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        else:
            return None
    return current


def _interpret_binary(expr: BinaryExpr, ctx: Mapping[str, Any]) -> Any:
    """Evaluate a binary expression."""
    # Short-circuit for logical operators
    if expr.op == BinaryOp.AND:
        left = _interpret(expr.left, ctx)
        if not left:
            return left
        return _interpret(expr.right, ctx)

    if expr.op == BinaryOp.OR:
        left = _interpret(expr.left, ctx)
        if left:
            return left
        return _interpret(expr.right, ctx)

    left = _interpret(expr.left, ctx)
    right = _interpret(expr.right, ctx)

    # Null-safe comparisons
    if expr.op == BinaryOp.EQ:
        return left == right
    if expr.op == BinaryOp.NE:
        return left != right

    # Null propagation for arithmetic/comparison
    if left is None or right is None:
        if expr.op in (BinaryOp.LT, BinaryOp.GT, BinaryOp.LE, BinaryOp.GE):
            return False
        return None

    try:
        if expr.op == BinaryOp.ADD:
            if isinstance(left, str) or isinstance(right, str):
                return f"{left}{right}"
            return left + right
        if expr.op == BinaryOp.SUB:
            return left - right
        if expr.op == BinaryOp.MUL:
            return left * right
        if expr.op == BinaryOp.DIV:
            if right == 0:
                raise ExpressionEvalError("Division by zero")
            return left / right
        if expr.op == BinaryOp.MOD:
            if right == 0:
                raise ExpressionEvalError("Modulo by zero")
            return left % right

        if expr.op == BinaryOp.LT:
            return left < right
        if expr.op == BinaryOp.GT:
            return left > right
        if expr.op == BinaryOp.LE:
            return left <= right
        if expr.op == BinaryOp.GE:
            return left >= right
    except TypeError as e:
        raise ExpressionEvalError(
            f"Unsupported operand types for {expr.op.value}: "
            f"{type(left).__name__} and {type(right).__name__}"
        ) from e

    raise ExpressionEvalError(f"Unknown binary op: {expr.op}")


def _interpret_unary(expr: UnaryExpr, ctx: Mapping[str, Any]) -> Any:
    """Evaluate a unary expression."""
    val = _interpret(expr.operand, ctx)
    if expr.op == UnaryOp.NOT:
        return not val
    if expr.op == UnaryOp.NEG:
        if val is None:
            return None
        if not isinstance(val, (int, float)) or isinstance(val, bool):
            raise ExpressionEvalError(f"Cannot negate {type(val).__name__}")
        return -val
    raise ExpressionEvalError(f"Unknown unary op: {expr.op}")


def _interpret_func_call(expr: FuncCall, ctx: Mapping[str, Any]) -> Any:
    """Evaluate a built-in function call (closed set, no user-defined functions)."""
    name = expr.name

    if name in ("len", "count"):
        if len(expr.args) != 1:
            raise ExpressionEvalError(f"{name}() takes exactly 1 argument")
        val = _interpret(expr.args[0], ctx)
        if val is None:
            return 0
        try:
            return len(val)
        except TypeError as e:
            raise ExpressionEvalError(f"{name}() of {type(val).__name__}") from e

    if name == "first":
        if len(expr.args) != 1:
            raise ExpressionEvalError("first() takes exactly 1 argument")
        val = _interpret(expr.args[0], ctx)
        if isinstance(val, (list, tuple)) and val:
            return val[0]
        return None

    if name == "coalesce":
        for arg in expr.args:
            val = _interpret(arg, ctx)
            if val is not None:
                return val
        return None

    if name == "concat":
        parts = [_interpret(a, ctx) for a in expr.args]
        return "".join(_stringify(p) for p in parts if p is not None)

    if name in ("lower", "upper"):
        if len(expr.args) != 1:
            raise ExpressionEvalError(f"{name}() takes exactly 1 argument")
        val = _interpret(expr.args[0], ctx)
        if val is None:
            return None
        text = _stringify(val)
        return text.lower() if name == "lower" else text.upper()

    raise ExpressionEvalError(f"Unknown function: {name}()")


def _interpret_in(expr: InExpr, ctx: Mapping[str, Any]) -> bool:
    """Evaluate an 'in' / 'not in' expression."""
    val = _interpret(expr.value, ctx)
    items = [_interpret(item, ctx) for item in expr.items]
    result = val in items
    return not result if expr.negated else result


def _interpret_template(expr: TemplateExpr, ctx: Mapping[str, Any]) -> str:
    """Interpolate a template; null values render as empty strings."""
    out: list[str] = []
    for part in expr.parts:
        if isinstance(part, str):
            out.append(part)
            continue
        val = _interpret(part, ctx)
        if val is not None:
            out.append(_stringify(val))
    return "".join(out)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
