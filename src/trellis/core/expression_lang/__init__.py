"""
Trellis sandboxed expression language.

Tokenizer, parser and evaluator for section ``condition`` and
``dataTransform`` strings and for share-message templates.

Usage:
    from trellis.core.expression_lang import parse_expr, evaluate

    expr = parse_expr("USER.IS_VERIFIED and len(data.items) > 0")
    result = evaluate(expr, {"USER": {"IS_VERIFIED": True}, "data": {"items": [1]}})
    # result == True
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from trellis.core.expression_lang.evaluator import ExpressionEvalError, evaluate
from trellis.core.expression_lang.parser import (
    ExpressionParseError,
    parse_expr,
    parse_template,
)
from trellis.core.ir.expressions import Expr, TemplateExpr


@lru_cache(maxsize=512)
def compile_expr(source: str) -> Expr:
    """Parse and memoize an expression (AST nodes are immutable)."""
    return parse_expr(source)


@lru_cache(maxsize=256)
def compile_template(body: str) -> TemplateExpr:
    """Parse and memoize a template body."""
    return parse_template(body)


def render_template(body: str, data: Mapping[str, Any]) -> str:
    """Render a template body such as ``Join me for {title}`` against ``data``."""
    result: str = evaluate(compile_template(body), data)
    return result


__all__ = [
    "ExpressionEvalError",
    "ExpressionParseError",
    "compile_expr",
    "compile_template",
    "evaluate",
    "parse_expr",
    "parse_template",
    "render_template",
]
