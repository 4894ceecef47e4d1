"""
Recursive descent parser for the Trellis expression language.

Grammar (precedence low to high):
    expr        → or_expr
    or_expr     → and_expr ("or" and_expr)*
    and_expr    → not_expr ("and" not_expr)*
    not_expr    → "not" not_expr | comparison
    comparison  → addition (comp_op addition)?
                | addition ("in" | "not" "in") list_literal
                | addition ("is" "not"? "null")
    addition    → multiply (("+"|"-") multiply)*
    multiply    → unary (("*"|"/"|"%") unary)*
    unary       → "-" unary | primary
    primary     → literal | template | func_call | field_ref
                | "(" expr ")" | list_literal | object_literal
    literal     → INT | FLOAT | STRING | "true" | "false" | "null"
    template    → TEMPLATE   (body: text with "{" expr "}" segments, "{{" / "}}" escape)
    func_call   → IDENT "(" (expr ("," expr)*)? ")"
    field_ref   → IDENT ("." IDENT)*
    list_literal → "[" (expr ("," expr)*)? "]"
    object_literal → "{" ((IDENT | STRING) ":" expr ("," ...)*)? "}"

``&&``, ``||``, ``!``, ``===`` and ``!==`` are accepted as aliases, and a whole
expression may be wrapped in ``${ ... }``.
"""

from __future__ import annotations

from trellis.core.expression_lang.tokenizer import (
    ExpressionTokenError,
    Token,
    TokenKind,
    tokenize,
)
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


class ExpressionParseError(Exception):
    """Error during expression parsing."""

    def __init__(self, message: str, pos: int = 0) -> None:
        super().__init__(message)
        self.pos = pos


# Groups, list and object literals, call arguments and prefix operators all
# count toward this limit.
MAX_NESTING_DEPTH = 32


_COMPARISON_OPS: dict[TokenKind, BinaryOp] = {
    TokenKind.EQ: BinaryOp.EQ,
    TokenKind.NE: BinaryOp.NE,
    TokenKind.LT: BinaryOp.LT,
    TokenKind.GT: BinaryOp.GT,
    TokenKind.LE: BinaryOp.LE,
    TokenKind.GE: BinaryOp.GE,
}


class _Parser:
    """Recursive descent parser for expressions."""

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.tokens[-1]  # EOF

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def expect(self, kind: TokenKind) -> Token:
        tok = self.current
        if tok.kind != kind:
            raise ExpressionParseError(
                f"Expected {kind}, got {tok.kind} ({tok.value!r})",
                tok.pos,
            )
        return self.advance()

    def match(self, *kinds: TokenKind) -> Token | None:
        if self.current.kind in kinds:
            return self.advance()
        return None

    # -- Grammar rules --

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionParseError(
                f"Expression nested deeper than {MAX_NESTING_DEPTH} levels",
                self.current.pos,
            )

    def parse_expr(self) -> Expr:
        self._enter()
        try:
            return self.parse_or_expr()
        finally:
            self.depth -= 1

    def parse_or_expr(self) -> Expr:
        """and_expr ("or" and_expr)*"""
        left = self.parse_and_expr()
        while self.match(TokenKind.OR):
            right = self.parse_and_expr()
            left = BinaryExpr(op=BinaryOp.OR, left=left, right=right)
        return left

    def parse_and_expr(self) -> Expr:
        """not_expr ("and" not_expr)*"""
        left = self.parse_not_expr()
        while self.match(TokenKind.AND):
            right = self.parse_not_expr()
            left = BinaryExpr(op=BinaryOp.AND, left=left, right=right)
        return left

    def parse_not_expr(self) -> Expr:
        """'not' not_expr | comparison"""
        if self.match(TokenKind.NOT):
            self._enter()
            try:
                operand = self.parse_not_expr()
            finally:
                self.depth -= 1
            return UnaryExpr(op=UnaryOp.NOT, operand=operand)
        return self.parse_comparison()

    def parse_comparison(self) -> Expr:
        """addition (comp_op addition | 'in'/'not in' list | 'is' ['not'] 'null')?"""
        left = self.parse_addition()

        if self.current.kind == TokenKind.IS:
            self.advance()
            negated = bool(self.match(TokenKind.NOT))
            self.expect(TokenKind.NULL)
            return BinaryExpr(
                op=BinaryOp.NE if negated else BinaryOp.EQ,
                left=left,
                right=Literal(value=None),
            )

        if self.current.kind == TokenKind.IN:
            self.advance()
            items = self._parse_list_items()
            return InExpr(value=left, items=items, negated=False)
        if self.current.kind == TokenKind.NOT and self.peek(1).kind == TokenKind.IN:
            self.advance()  # not
            self.advance()  # in
            items = self._parse_list_items()
            return InExpr(value=left, items=items, negated=True)

        if self.current.kind in _COMPARISON_OPS:
            op = _COMPARISON_OPS[self.current.kind]
            self.advance()
            right = self.parse_addition()
            return BinaryExpr(op=op, left=left, right=right)

        return left

    def parse_addition(self) -> Expr:
        """multiply (('+' | '-') multiply)*"""
        left = self.parse_multiply()
        while self.current.kind in (TokenKind.PLUS, TokenKind.MINUS):
            op = BinaryOp.ADD if self.current.kind == TokenKind.PLUS else BinaryOp.SUB
            self.advance()
            right = self.parse_multiply()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_multiply(self) -> Expr:
        """unary (('*' | '/' | '%') unary)*"""
        left = self.parse_unary()
        while self.current.kind in (TokenKind.STAR, TokenKind.SLASH, TokenKind.PERCENT):
            if self.current.kind == TokenKind.STAR:
                op = BinaryOp.MUL
            elif self.current.kind == TokenKind.SLASH:
                op = BinaryOp.DIV
            else:
                op = BinaryOp.MOD
            self.advance()
            right = self.parse_unary()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_unary(self) -> Expr:
        """'-' unary | primary"""
        if self.match(TokenKind.MINUS):
            self._enter()
            try:
                operand = self.parse_unary()
            finally:
                self.depth -= 1
            return UnaryExpr(op=UnaryOp.NEG, operand=operand)
        return self.parse_primary()

    def parse_primary(self) -> Expr:
        tok = self.current

        if tok.kind == TokenKind.LPAREN:
            self.advance()
            expr = self.parse_expr()
            self.expect(TokenKind.RPAREN)
            return expr

        if tok.kind == TokenKind.LBRACKET:
            return ListExpr(items=self._parse_list_items())

        if tok.kind == TokenKind.LBRACE:
            return self._parse_object()

        if tok.kind == TokenKind.INT:
            self.advance()
            return Literal(value=int(tok.value))
        if tok.kind == TokenKind.FLOAT:
            self.advance()
            return Literal(value=float(tok.value))
        if tok.kind == TokenKind.STRING:
            self.advance()
            return Literal(value=tok.value)
        if tok.kind == TokenKind.TRUE:
            self.advance()
            return Literal(value=True)
        if tok.kind == TokenKind.FALSE:
            self.advance()
            return Literal(value=False)
        if tok.kind == TokenKind.NULL:
            self.advance()
            return Literal(value=None)

        if tok.kind == TokenKind.TEMPLATE:
            self.advance()
            return parse_template(tok.value, offset=tok.pos + 1)

        if tok.kind == TokenKind.IDENT:
            if self.peek(1).kind == TokenKind.LPAREN:
                return self._parse_func_call()
            return self._parse_field_ref()

        raise ExpressionParseError(
            f"Unexpected token: {tok.kind} ({tok.value!r})",
            tok.pos,
        )

    def _parse_func_call(self) -> FuncCall:
        """IDENT '(' (expr (',' expr)*)? ')'"""
        name_tok = self.expect(TokenKind.IDENT)
        self.expect(TokenKind.LPAREN)

        args: list[Expr] = []
        if self.current.kind != TokenKind.RPAREN:
            args.append(self.parse_expr())
            while self.match(TokenKind.COMMA):
                args.append(self.parse_expr())

        self.expect(TokenKind.RPAREN)
        return FuncCall(name=name_tok.value, args=args)

    def _parse_field_ref(self) -> FieldRef:
        """IDENT ('.' IDENT)*"""
        first = self.expect(TokenKind.IDENT)
        path = [first.value]

        while self.match(TokenKind.DOT):
            segment = self.expect(TokenKind.IDENT)
            path.append(segment.value)

        return FieldRef(path=path)

    def _parse_list_items(self) -> list[Expr]:
        """'[' (expr (',' expr)*)? ']'"""
        self.expect(TokenKind.LBRACKET)
        items: list[Expr] = []
        if self.current.kind != TokenKind.RBRACKET:
            items.append(self.parse_expr())
            while self.match(TokenKind.COMMA):
                items.append(self.parse_expr())
        self.expect(TokenKind.RBRACKET)
        return items

    def _parse_object(self) -> ObjectExpr:
        """'{' (key ':' expr (',' key ':' expr)*)? '}'"""
        self.expect(TokenKind.LBRACE)
        entries: list[tuple[str, Expr]] = []
        seen: set[str] = set()
        while self.current.kind != TokenKind.RBRACE:
            key_tok = self.match(TokenKind.IDENT, TokenKind.STRING)
            if key_tok is None:
                raise ExpressionParseError(
                    f"Expected object key, got {self.current.kind} ({self.current.value!r})",
                    self.current.pos,
                )
            if key_tok.value in seen:
                raise ExpressionParseError(f"Duplicate object key: {key_tok.value!r}", key_tok.pos)
            seen.add(key_tok.value)
            self.expect(TokenKind.COLON)
            entries.append((key_tok.value, self.parse_expr()))
            if not self.match(TokenKind.COMMA):
                break
        self.expect(TokenKind.RBRACE)
        return ObjectExpr(entries=entries)


def _unwrap(source: str) -> str:
    """Strip an optional ``${ ... }`` wrapper."""
    stripped = source.strip()
    if stripped.startswith("${") and stripped.endswith("}"):
        return stripped[2:-1]
    return source


def parse_expr(source: str) -> Expr:
    """Parse an expression string into an AST.

    Args:
        source: Expression string (e.g., ``USER.IS_VERIFIED and len(data.items) > 0``)

    Returns:
        Parsed expression AST.

    Raises:
        ExpressionParseError: If the expression is invalid.
    """
    source = _unwrap(source)
    if not source.strip():
        raise ExpressionParseError("Empty expression", 0)

    try:
        tokens = tokenize(source)
    except ExpressionTokenError as e:
        raise ExpressionParseError(str(e), e.pos) from e

    parser = _Parser(tokens)
    expr = parser.parse_expr()

    if parser.current.kind != TokenKind.EOF:
        raise ExpressionParseError(
            f"Unexpected token after expression: {parser.current.value!r}",
            parser.current.pos,
        )

    return expr


def parse_template(body: str, offset: int = 0) -> TemplateExpr:
    """Parse a template body such as ``Join me for {data.title}``.

    ``{{`` and ``}}`` produce literal braces.

    Raises:
        ExpressionParseError: On unbalanced braces or an invalid embedded expression.
    """
    parts: list[str | Expr] = []
    text: list[str] = []
    i = 0
    n = len(body)

    while i < n:
        c = body[i]
        if c == "{" and body.startswith("{{", i):
            text.append("{")
            i += 2
            continue
        if c == "}" and body.startswith("}}", i):
            text.append("}")
            i += 2
            continue
        if c == "}":
            raise ExpressionParseError("Unmatched '}' in template", offset + i)
        if c == "{":
            end = body.find("}", i + 1)
            if end == -1:
                raise ExpressionParseError("Unterminated '{' in template", offset + i)
            if text:
                parts.append("".join(text))
                text = []
            try:
                parts.append(parse_expr(body[i + 1 : end]))
            except ExpressionParseError as e:
                raise ExpressionParseError(str(e), offset + i + 1 + e.pos) from e
            i = end + 1
            continue
        text.append(c)
        i += 1

    if text:
        parts.append("".join(text))
    return TemplateExpr(parts=parts)
