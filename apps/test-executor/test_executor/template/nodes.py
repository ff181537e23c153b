"""Syntax tree of the template expression language."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .token import Token


class Node:
    def pos(self) -> int:
        raise NotImplementedError


@dataclass
class BasicLit(Node):
    value_pos: int
    kind: Token
    value: str

    def pos(self) -> int:
        return self.value_pos


@dataclass
class Ident(Node):
    name_pos: int
    name: str

    def pos(self) -> int:
        return self.name_pos


@dataclass
class SelectorExpr(Node):
    x: Node
    sel: Ident

    def pos(self) -> int:
        return self.sel.pos()


@dataclass
class IndexExpr(Node):
    x: Node
    lbrack: int
    index: Optional[Node]
    rbrack: int

    def pos(self) -> int:
        return self.lbrack


@dataclass
class CallExpr(Node):
    fun: Node
    lparen: int
    args: list[Optional[Node]] = field(default_factory=list)
    rparen: int = 0

    def pos(self) -> int:
        return self.lparen


@dataclass
class LeftArrowExpr(Node):
    """``{{fun <-}}: arg`` where ``arg`` is the YAML text after the colon.

    ``arg`` is None when the expression is used as a mapping key.
    """

    fun: Node
    larrow: int
    rdbrace: int
    arg: Optional[Node]

    def pos(self) -> int:
        return self.larrow


@dataclass
class BinaryExpr(Node):
    x: Optional[Node]
    op_pos: int
    op: Token
    y: Optional[Node]
    # the operands came from a quoted YAML scalar
    quoted: bool = False

    def pos(self) -> int:
        return self.op_pos


@dataclass
class ParameterExpr(Node):
    ldbrace: int
    x: Optional[Node] = None
    rdbrace: int = 0
    quoted: bool = False
    # inside a YAML block scalar of a left arrow argument
    literal: bool = False

    def pos(self) -> int:
        return self.ldbrace


@dataclass
class ParenExpr(Node):
    lparen: int
    x: Optional[Node]
    rparen: int

    def pos(self) -> int:
        return self.lparen


@dataclass
class UnaryExpr(Node):
    op_pos: int
    op: Token
    x: Optional[Node]

    def pos(self) -> int:
        return self.op_pos


@dataclass
class ConditionalExpr(Node):
    """``condition ? x : y``"""

    condition: Node
    question: int
    x: Optional[Node]
    colon: int
    y: Optional[Node]

    def pos(self) -> int:
        return self.question


@dataclass
class DefinedExpr(Node):
    """``defined(arg)`` reports whether a reference resolves."""

    defined_pos: int
    arg: Optional[Node]

    def pos(self) -> int:
        return self.defined_pos
