"""
Expression AST for section conditions, data transforms and share templates.

The structure document embeds small expressions as strings (``condition``,
``dataTransform``). They are parsed into this closed set of node types and
interpreted by a pure evaluator; they are never handed to ``eval``.

Supports:
- Field references: ``USER.IS_VERIFIED``, ``data.items``, ``FILTER.CATEGORY``
- Comparison: ==, !=, <, >, <=, >=
- Logic: and, or, not
- Membership: ``x in [a, b]``, ``x not in [a, b]``
- Null checks: ``x is null``, ``x is not null``
- Arithmetic: +, -, *, /, %
- Function calls from a closed set: ``len(data.items)``, ``coalesce(a, b)``
- List literals: ``[1, 2, 3]``
- Object literals: ``{title: data.name, count: len(data.items)}``
- Template strings: ```Join me for {data.title}```
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class BinaryOp(StrEnum):
    """Binary operators for expressions."""

    # Arithmetic
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    # Comparison
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    # Logical
    AND = "and"
    OR = "or"


class UnaryOp(StrEnum):
    """Unary operators for expressions."""

    NEG = "-"
    NOT = "not"


# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------


class Literal(BaseModel):
    """A literal value: int, float, str, bool, or None (null)."""

    value: int | float | str | bool | None = Field(description="The literal value")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.value is None:
            return "null"
        if isinstance(self.value, str):
            return f'"{self.value}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


class FieldRef(BaseModel):
    """
    Reference to a value in the evaluation namespace.

    Examples:
        - FieldRef(path=["data"]) → data
        - FieldRef(path=["USER", "IS_VERIFIED"]) → USER.IS_VERIFIED
    """

    path: list[str] = Field(description="Field path segments")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return ".".join(self.path)

    @property
    def root(self) -> str:
        """The first segment (namespace or top-level name)."""
        return self.path[0]


class BinaryExpr(BaseModel):
    """Binary operation: left op right."""

    op: BinaryOp
    left: Expr
    right: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


class UnaryExpr(BaseModel):
    """Unary operation: op operand."""

    op: UnaryOp
    operand: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.op == UnaryOp.NOT:
            return f"not {self.operand}"
        return f"-{self.operand}"


class FuncCall(BaseModel):
    """
    Function call: name(arg1, arg2, ...).

    Only the evaluator's closed set of built-ins can be called:
    ``len``, ``count``, ``first``, ``coalesce``, ``concat``, ``lower``, ``upper``.
    """

    name: str = Field(description="Function name")
    args: list[Expr] = Field(default_factory=list, description="Arguments")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.name}({args_str})"


class InExpr(BaseModel):
    """Membership test: value in [a, b, c] or value not in [a, b, c]."""

    value: Expr = Field(description="Value to test")
    items: list[Expr] = Field(description="Items to check against")
    negated: bool = Field(default=False, description="True for 'not in'")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        items_str = ", ".join(str(i) for i in self.items)
        op = "not in" if self.negated else "in"
        return f"({self.value} {op} [{items_str}])"


class ListExpr(BaseModel):
    """List literal: [a, b, c]."""

    items: list[Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return "[" + ", ".join(str(i) for i in self.items) + "]"


class ObjectExpr(BaseModel):
    """
    Object literal used by data transforms.

    Example:
        ``{title: data.name, total: len(data.items)}``
    """

    entries: list[tuple[str, Expr]] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return "{" + ", ".join(f"{k}: {v}" for k, v in self.entries) + "}"


class TemplateExpr(BaseModel):
    """
    Template string with interpolated expressions.

    ``parts`` alternates literal text and expressions in source order.
    """

    parts: list[str | Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        out = []
        for part in self.parts:
            if isinstance(part, str):
                out.append(part.replace("{", "{{").replace("}", "}}"))
            else:
                out.append("{" + str(part) + "}")
        return "`" + "".join(out) + "`"


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

Expr = (
    Literal
    | FieldRef
    | BinaryExpr
    | UnaryExpr
    | FuncCall
    | InExpr
    | ListExpr
    | ObjectExpr
    | TemplateExpr
)

# Rebuild models for recursive forward references
BinaryExpr.model_rebuild()
UnaryExpr.model_rebuild()
FuncCall.model_rebuild()
InExpr.model_rebuild()
ListExpr.model_rebuild()
ObjectExpr.model_rebuild()
TemplateExpr.model_rebuild()


def field_roots(expr: Expr) -> set[str]:
    """Top-level names an expression reads (``USER`` for ``USER.IS_VERIFIED``)."""
    if isinstance(expr, FieldRef):
        return {expr.root}
    if isinstance(expr, BinaryExpr):
        return field_roots(expr.left) | field_roots(expr.right)
    if isinstance(expr, UnaryExpr):
        return field_roots(expr.operand)
    if isinstance(expr, FuncCall):
        return set().union(*(field_roots(a) for a in expr.args))
    if isinstance(expr, InExpr):
        return field_roots(expr.value).union(*(field_roots(i) for i in expr.items))
    if isinstance(expr, ListExpr):
        return set().union(*(field_roots(i) for i in expr.items))
    if isinstance(expr, ObjectExpr):
        return set().union(*(field_roots(v) for _, v in expr.entries))
    if isinstance(expr, TemplateExpr):
        return set().union(*(field_roots(p) for p in expr.parts if not isinstance(p, str)))
    return set()
