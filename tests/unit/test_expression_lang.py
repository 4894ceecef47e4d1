"""Tests for the sandboxed expression language used by conditions and transforms."""

from __future__ import annotations

import pytest

from trellis.core.expression_lang import (
    ExpressionEvalError,
    ExpressionParseError,
    compile_expr,
    evaluate,
    parse_expr,
    render_template,
)
from trellis.core.expression_lang.parser import MAX_NESTING_DEPTH
from trellis.core.ir.expressions import BinaryExpr, FieldRef, field_roots


def _eval(source: str, **ctx: object) -> object:
    return evaluate(parse_expr(source), ctx)


class TestParsing:
    def test_field_ref(self) -> None:
        expr = parse_expr("USER.IS_VERIFIED")
        assert isinstance(expr, FieldRef)
        assert expr.path == ["USER", "IS_VERIFIED"]
        assert expr.root == "USER"

    def test_comparison(self) -> None:
        expr = parse_expr("USER.IS_VERIFIED == true")
        assert isinstance(expr, BinaryExpr)

    def test_js_style_operators(self) -> None:
        assert _eval("a === 1 && b !== 2", a=1, b=3) is True
        assert _eval("a || b", a=None, b="x") == "x"

    def test_template_wrapper_is_stripped(self) -> None:
        assert _eval("${count + 1}", count=2) == 3

    def test_empty_expression(self) -> None:
        with pytest.raises(ExpressionParseError):
            parse_expr("   ")

    def test_trailing_tokens(self) -> None:
        with pytest.raises(ExpressionParseError) as exc_info:
            parse_expr("a b")
        assert exc_info.value.pos == 2

    def test_unexpected_character(self) -> None:
        with pytest.raises(ExpressionParseError):
            parse_expr("a ; b")

    def test_duplicate_object_key(self) -> None:
        with pytest.raises(ExpressionParseError):
            parse_expr("{a: 1, a: 2}")

    def test_compile_is_memoized(self) -> None:
        assert compile_expr("x + 1") is compile_expr("x + 1")

    def test_nesting_at_limit_parses(self) -> None:
        depth = MAX_NESTING_DEPTH - 1
        assert _eval("(" * depth + "1" + ")" * depth) == 1

    @pytest.mark.parametrize(
        "source",
        [
            "(" * 150 + "true" + ")" * 150,
            "[" * 150 + "]" * 150,
            "not " * 2000 + "true",
            "-" * 2000 + "1",
            "len(" * 100 + "x" + ")" * 100,
        ],
    )
    def test_deep_nesting_is_a_parse_error(self, source: str) -> None:
        with pytest.raises(ExpressionParseError, match="nested deeper"):
            parse_expr(source)


class TestEvaluation:
    def test_arithmetic_precedence(self) -> None:
        assert _eval("1 + 2 * 3") == 7
        assert _eval("(1 + 2) * 3") == 9
        assert _eval("-x", x=4) == -4

    def test_missing_field_is_null(self) -> None:
        assert _eval("USER.ID", USER={}) is None
        assert _eval("USER.ID is null", USER={}) is True

    def test_null_comparison_is_false(self) -> None:
        assert _eval("count > 1", count=None) is False

    def test_in_and_not_in(self) -> None:
        assert _eval("x in [1, 2]", x=2) is True
        assert _eval("x not in ['a']", x="a") is False

    def test_object_construction(self) -> None:
        result = _eval(
            "{name: data.display_name, email: USER.EMAIL}",
            data={"display_name": "Ada"},
            USER={"EMAIL": "ada@example.com"},
        )
        assert result == {"name": "Ada", "email": "ada@example.com"}

    def test_builtin_functions(self) -> None:
        assert _eval("len(items)", items=[1, 2, 3]) == 3
        assert _eval("first(items)", items=["a", "b"]) == "a"
        assert _eval("coalesce(missing, 'x')") == "x"
        assert _eval("upper(name)", name="ada") == "ADA"
        assert _eval("concat('a', 1, true)") == "a1true"

    def test_division_by_zero(self) -> None:
        with pytest.raises(ExpressionEvalError):
            _eval("1 / 0")

    def test_unknown_function(self) -> None:
        with pytest.raises(ExpressionEvalError):
            _eval("exec('rm -rf /')")

    def test_attribute_access_is_not_possible(self) -> None:
        class Secret:
            token = "s3cret"

        assert _eval("obj.token", obj=Secret()) is None

    def test_type_error_is_wrapped(self) -> None:
        with pytest.raises(ExpressionEvalError):
            _eval("a - b", a="x", b=1)


class TestTemplates:
    def test_render(self) -> None:
        assert render_template("Join me for: {title}", {"title": "Run"}) == "Join me for: Run"

    def test_null_renders_empty(self) -> None:
        assert render_template("[{missing}]", {}) == "[]"

    def test_escaped_braces(self) -> None:
        assert render_template("{{literal}}", {}) == "{literal}"

    def test_unmatched_brace(self) -> None:
        with pytest.raises(ExpressionParseError):
            render_template("oops }", {})

    def test_backtick_template_in_expression(self) -> None:
        assert _eval("`Hi {name}!`", name="Ada") == "Hi Ada!"


class TestFieldRoots:
    def test_roots_of_condition(self) -> None:
        expr = parse_expr("USER.IS_VERIFIED and len(data.items) > FILTER.MIN")
        assert field_roots(expr) == {"USER", "data", "FILTER"}

    def test_literals_have_no_roots(self) -> None:
        assert field_roots(parse_expr("1 + 2")) == set()

    def test_roots_of_object(self) -> None:
        expr = parse_expr("{a: GEOLOCATION.LAT, b: [USER.ID]}")
        assert field_roots(expr) == {"GEOLOCATION", "USER"}
