"""Intermediate representation for the sandboxed expression language."""

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
    field_roots,
)

__all__ = [
    "BinaryExpr",
    "BinaryOp",
    "Expr",
    "FieldRef",
    "FuncCall",
    "InExpr",
    "ListExpr",
    "Literal",
    "ObjectExpr",
    "TemplateExpr",
    "UnaryExpr",
    "UnaryOp",
    "field_roots",
]
