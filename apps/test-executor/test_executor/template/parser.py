"""Recursive-descent parser producing :mod:`nodes` trees."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .nodes import (
    BasicLit,
    BinaryExpr,
    CallExpr,
    ConditionalExpr,
    DefinedExpr,
    Ident,
    IndexExpr,
    LeftArrowExpr,
    Node,
    ParameterExpr,
    ParenExpr,
    SelectorExpr,
    UnaryExpr,
)
from .scanner import Scanner, ScanError
from .token import BINARY_OPERATORS, LOWEST_PREC, Tok, Token


@dataclass
class Position:
    line: int
    column: int
    offset: int


class ParseError(ValueError):
    """One or more syntax errors, each reported with its column."""

    def __init__(self, errors: list[tuple[int, str]]) -> None:
        self.errors = errors
        super().__init__(self._message())

    def _message(self) -> str:
        first = f"col {self.errors[0][0]}: {self.errors[0][1]}"
        if len(self.errors) == 1:
            return first
        return f"{first} (and {len(self.errors) - 1} more errors)"


class PositionCalculator:
    """Translates 1-based offsets into line and column numbers."""

    def __init__(self, text: str) -> None:
        self._line_lengths = [len(line) for line in text.splitlines(keepends=True) if line.endswith("\n")]

    def position(self, offset: int) -> Position:
        line, previous, total = 1, 0, 0
        for length in self._line_lengths:
            total += length
            if offset < total:
                break
            previous = total
            line += 1
        return Position(line=line, column=offset - previous, offset=offset)


class Parser:
    def __init__(self, text: str) -> None:
        self._scanner = Scanner(text)
        self._calculator = PositionCalculator(text)
        self.pos = 0
        self.tok = Token.EOF
        self.lit = ""
        self.errors: list[tuple[int, str]] = []

    def parse(self) -> Node:
        self._next()
        if self.tok is Token.EOF and not self.errors:
            return BasicLit(value_pos=0, kind=Token.STRING, value="")
        expr = self._parse_expr()
        if self.errors:
            raise ParseError(self.errors)
        return expr

    def position(self, offset: int) -> Position:
        return self._calculator.position(offset)

    def _next(self) -> None:
        try:
            tok = self._scanner.scan()
        except ScanError as exc:
            self._error(exc.pos, str(exc))
            tok = Tok(exc.pos, Token.EOF, "")
        self.pos, self.tok, self.lit = tok.pos, tok.type, tok.lit

    def _error(self, pos: int, message: str) -> None:
        self.errors.append((pos, message))

    def _expect(self, tok: Token) -> int:
        pos = self.pos
        if self.tok is not tok:
            self._error(pos, f"expected '{tok}', found '{self.tok}'")
        self._next()
        return pos

    def _parse_expr(self) -> Optional[Node]:
        return self._parse_binary_expr(LOWEST_PREC + 1)

    def _parse_binary_expr(self, prec: int) -> Optional[Node]:
        x = self._parse_unary_expr()
        while True:
            if self.tok is Token.LINEBREAK:
                return x
            oprec = self.tok.precedence
            if oprec < prec:
                return x
            if self.tok in BINARY_OPERATORS:
                op, pos, quoted = self.tok, self.pos, self._scanner.quoted()
                self._next()
                y = self._parse_binary_expr(oprec + 1)
                if y is None:
                    self._error(self.pos, f"expected operand, found '{self.tok}'")
                x = BinaryExpr(x=x, op_pos=pos, op=op, y=y, quoted=quoted)
            elif self.tok is Token.QUESTION:
                question = self.pos
                self._next()
                then = self._parse_expr()
                colon = self._expect(Token.COLON)
                # right associative: a ? b : c ? d : e
                otherwise = self._parse_binary_expr(oprec)
                x = ConditionalExpr(condition=x, question=question, x=then, colon=colon, y=otherwise)
            elif self.tok is Token.LARROW:
                pos = self.pos
                self._next()
                rdbrace = self._expect(Token.RDBRACE)
                if self.tok is Token.ILLEGAL:
                    self._error(self.pos, f"expected ':', found '{self.lit}'")
                x = LeftArrowExpr(fun=x, larrow=pos, rdbrace=rdbrace, arg=self._parse_expr())
                if self.tok is Token.LINEBREAK:
                    if self.lit:
                        # trailing whitespace of the argument is concatenated as a string
                        self.tok = Token.STRING
                        return x
                    self._next()
                    return x
            elif self.tok in (Token.LDBRACE, Token.STRING):
                pos = self.pos
                y = self._parse_binary_expr(oprec + 1)
                x = BinaryExpr(x=x, op_pos=pos, op=Token.CONCAT, y=y)
            else:
                return x

    def _parse_unary_expr(self) -> Optional[Node]:
        if self.tok in (Token.SUB, Token.NOT):
            op, pos = self.tok, self.pos
            self._next()
            x = self._parse_unary_expr()
            if x is None:
                self._error(self.pos, f"expected operand, found '{self.tok}'")
            return UnaryExpr(op_pos=pos, op=op, x=x)
        return self._parse_operand()

    def _parse_ident(self) -> Ident:
        pos = self.pos
        name = "_"
        # keywords are plain names after a period
        if self.tok in (Token.IDENT, Token.BOOL, Token.DEFINED):
            name = self.lit
            self._next()
        else:
            self._expect(Token.IDENT)
        return Ident(name_pos=pos, name=name)

    def _parse_operand(self) -> Optional[Node]:
        if self.tok in (Token.STRING, Token.INT, Token.FLOAT, Token.BOOL):
            lit = BasicLit(value_pos=self.pos, kind=self.tok, value=self.lit)
            self._next()
            return lit
        if self.tok is Token.IDENT:
            expr: Node = self._parse_ident()
            while True:
                if self.tok is Token.PERIOD:
                    self._next()
                    expr = SelectorExpr(x=expr, sel=self._parse_ident())
                elif self.tok is Token.LBRACK:
                    lbrack = self.pos
                    self._next()
                    index = self._parse_expr()
                    expr = IndexExpr(x=expr, lbrack=lbrack, index=index, rbrack=self._expect(Token.RBRACK))
                elif self.tok is Token.LPAREN:
                    lparen = self.pos
                    self._next()
                    args = self._parse_args()
                    expr = CallExpr(fun=expr, lparen=lparen, args=args, rparen=self._expect(Token.RPAREN))
                else:
                    return expr
        if self.tok is Token.LPAREN:
            lparen = self.pos
            self._next()
            x = self._parse_expr()
            return ParenExpr(lparen=lparen, x=x, rparen=self._expect(Token.RPAREN))
        if self.tok is Token.DEFINED:
            pos = self.pos
            self._next()
            self._expect(Token.LPAREN)
            arg = self._parse_expr()
            self._expect(Token.RPAREN)
            return DefinedExpr(defined_pos=pos, arg=arg)
        if self.tok is Token.LDBRACE:
            return self._parse_parameter()
        if self.tok not in (Token.RDBRACE, Token.LINEBREAK, Token.EOF):
            # '{{}}' and an empty left arrow argument have no operand
            self._error(self.pos, f"unexpected token '{self.lit or self.tok}'")
            self._next()
        return None

    def _parse_parameter(self) -> ParameterExpr:
        param = ParameterExpr(ldbrace=self.pos, quoted=self._scanner.quoted(), literal=self._scanner.literal())
        self._next()
        param.x = self._parse_expr()
        if isinstance(param.x, LeftArrowExpr):
            param.rdbrace = param.x.rdbrace
            return param
        param.rdbrace = self._expect(Token.RDBRACE)
        return param

    def _parse_args(self) -> list[Optional[Node]]:
        if self.tok is Token.RPAREN:
            return []
        args = [self._parse_expr()]
        while self.tok is Token.COMMA:
            self._next()
            args.append(self._parse_expr())
        return args
