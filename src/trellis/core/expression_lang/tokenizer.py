"""
Tokenizer for the Trellis expression language.

Converts an expression string into a sequence of typed tokens.
"""

from __future__ import annotations

import re
from enum import StrEnum, auto


class TokenKind(StrEnum):
    """Token types for the expression language."""

    # Literals
    INT = auto()
    FLOAT = auto()
    STRING = auto()
    TEMPLATE = auto()

    # Identifiers and keywords
    IDENT = auto()
    TRUE = auto()
    FALSE = auto()
    NULL = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    IN = auto()
    IS = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    EQ = auto()
    NE = auto()
    LT = auto()
    GT = auto()
    LE = auto()
    GE = auto()

    # Punctuation
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LBRACE = auto()
    RBRACE = auto()
    COMMA = auto()
    DOT = auto()
    COLON = auto()

    # End of input
    EOF = auto()


class Token:
    """A single token from the expression tokenizer."""

    __slots__ = ("kind", "value", "pos")

    def __init__(self, kind: TokenKind, value: str, pos: int) -> None:
        self.kind = kind
        self.value = value
        self.pos = pos

    def __repr__(self) -> str:
        return f"Token({self.kind}, {self.value!r}, pos={self.pos})"


_KEYWORDS: dict[str, TokenKind] = {
    "true": TokenKind.TRUE,
    "false": TokenKind.FALSE,
    "null": TokenKind.NULL,
    "and": TokenKind.AND,
    "or": TokenKind.OR,
    "not": TokenKind.NOT,
    "in": TokenKind.IN,
    "is": TokenKind.IS,
}

# Backend payloads are often written with JS-style operators.
_MULTI_CHAR_OPS: list[tuple[str, TokenKind]] = [
    ("===", TokenKind.EQ),
    ("!==", TokenKind.NE),
    ("==", TokenKind.EQ),
    ("!=", TokenKind.NE),
    ("<=", TokenKind.LE),
    (">=", TokenKind.GE),
    ("&&", TokenKind.AND),
    ("||", TokenKind.OR),
]

_SINGLE_CHAR_OPS: dict[str, TokenKind] = {
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.STAR,
    "/": TokenKind.SLASH,
    "%": TokenKind.PERCENT,
    "<": TokenKind.LT,
    ">": TokenKind.GT,
    "!": TokenKind.NOT,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
    ",": TokenKind.COMMA,
    ".": TokenKind.DOT,
    ":": TokenKind.COLON,
}

# Number pattern: int or float
_NUMBER_RE = re.compile(r"\d+(\.\d+)?")
# Identifier: letter or underscore followed by alphanumerics/underscores
_IDENT_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class ExpressionTokenError(Exception):
    """Error during expression tokenization."""

    def __init__(self, message: str, pos: int) -> None:
        super().__init__(message)
        self.pos = pos


def tokenize(source: str) -> list[Token]:
    """Tokenize an expression string into a list of tokens."""
    tokens: list[Token] = []
    i = 0
    n = len(source)

    while i < n:
        c = source[i]

        if c in " \t\n\r":
            i += 1
            continue

        if c in ('"', "'"):
            i, tok = _read_string(source, i)
            tokens.append(tok)
            continue

        if c == "`":
            i, tok = _read_template(source, i)
            tokens.append(tok)
            continue

        if c.isdigit():
            m = _NUMBER_RE.match(source, i)
            assert m is not None
            num_str = m.group(0)
            kind = TokenKind.FLOAT if "." in num_str else TokenKind.INT
            tokens.append(Token(kind, num_str, i))
            i = m.end()
            continue

        if c.isalpha() or c == "_":
            m = _IDENT_RE.match(source, i)
            assert m is not None
            word = m.group(0)
            kind = _KEYWORDS.get(word, TokenKind.IDENT)
            tokens.append(Token(kind, word, i))
            i = m.end()
            continue

        for text, kind in _MULTI_CHAR_OPS:
            if source.startswith(text, i):
                tokens.append(Token(kind, text, i))
                i += len(text)
                break
        else:
            if c in _SINGLE_CHAR_OPS:
                tokens.append(Token(_SINGLE_CHAR_OPS[c], c, i))
                i += 1
                continue
            raise ExpressionTokenError(f"Unexpected character: {c!r}", i)

    tokens.append(Token(TokenKind.EOF, "", n))
    return tokens


def _read_string(source: str, start: int) -> tuple[int, Token]:
    """Read a quoted string literal."""
    quote = source[start]
    i = start + 1
    n = len(source)
    chars: list[str] = []

    while i < n:
        c = source[i]
        if c == "\\":
            if i + 1 < n:
                chars.append(source[i + 1])
                i += 2
                continue
            raise ExpressionTokenError("Unterminated escape sequence", i)
        if c == quote:
            return i + 1, Token(TokenKind.STRING, "".join(chars), start)
        chars.append(c)
        i += 1

    raise ExpressionTokenError("Unterminated string literal", start)


def _read_template(source: str, start: int) -> tuple[int, Token]:
    """Read a backtick template; the raw body is parsed later by the parser."""
    i = start + 1
    n = len(source)
    chars: list[str] = []

    while i < n:
        c = source[i]
        if c == "\\" and i + 1 < n and source[i + 1] == "`":
            chars.append("`")
            i += 2
            continue
        if c == "`":
            return i + 1, Token(TokenKind.TEMPLATE, "".join(chars), start)
        chars.append(c)
        i += 1

    raise ExpressionTokenError("Unterminated template string", start)
