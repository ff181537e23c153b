"""Tokens of the template expression language."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Token(Enum):
    ILLEGAL = "ILLEGAL"
    EOF = "EOF"
    LINEBREAK = "LINEBREAK"

    STRING = "STRING"
    INT = "INT"
    FLOAT = "FLOAT"
    BOOL = "BOOL"
    IDENT = "IDENT"

    ADD = "+"
    SUB = "-"
    MUL = "*"
    QUO = "/"
    REM = "%"

    LAND = "&&"
    LOR = "||"
    COALESCING = "??"

    EQL = "=="
    NEQ = "!="
    LSS = "<"
    LEQ = "<="
    GTR = ">"
    GEQ = ">="
    NOT = "!"

    LPAREN = "("
    RPAREN = ")"
    LBRACK = "["
    RBRACK = "]"
    LDBRACE = "{{"
    RDBRACE = "}}"
    COMMA = ","
    PERIOD = "."
    QUESTION = "?"
    COLON = ":"
    LARROW = "<-"
    # adjacent operands without an operator between them
    CONCAT = "implicitly concatenate"

    DEFINED = "defined"

    def __str__(self) -> str:
        return self.value

    @property
    def precedence(self) -> int:
        return _PRECEDENCE.get(self, LOWEST_PREC)


LOWEST_PREC = 0

_PRECEDENCE = {
    Token.QUESTION: 1,
    Token.COLON: 1,
    Token.LOR: 2,
    Token.COALESCING: 2,
    Token.LAND: 3,
    Token.EQL: 4,
    Token.NEQ: 4,
    Token.LSS: 4,
    Token.LEQ: 4,
    Token.GTR: 4,
    Token.GEQ: 4,
    Token.ADD: 5,
    Token.SUB: 5,
    Token.LARROW: 5,
    Token.LDBRACE: 5,
    Token.STRING: 5,
    Token.MUL: 6,
    Token.QUO: 6,
    Token.REM: 6,
}

BINARY_OPERATORS = frozenset(
    {
        Token.ADD,
        Token.SUB,
        Token.MUL,
        Token.QUO,
        Token.REM,
        Token.LAND,
        Token.LOR,
        Token.COALESCING,
        Token.EQL,
        Token.NEQ,
        Token.LSS,
        Token.LEQ,
        Token.GTR,
        Token.GEQ,
    }
)


@dataclass
class Tok:
    """A scanned token with its 1-based position."""

    pos: int
    type: Token
    lit: str

    def __repr__(self) -> str:
        return f"Tok({self.type.name}, {self.lit!r}, pos={self.pos})"
