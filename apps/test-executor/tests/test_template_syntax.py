from __future__ import annotations

import pytest

from test_executor.template.nodes import (
    BinaryExpr,
    ConditionalExpr,
    Ident,
    LeftArrowExpr,
    ParameterExpr,
    SelectorExpr,
    UnaryExpr,
)
from test_executor.template.parser import ParseError, Parser, PositionCalculator
from test_executor.template.scanner import Scanner
from test_executor.template.token import Token


def _scan_all(text: str) -> list[tuple[int, Token, str]]:
    scanner = Scanner(text)
    tokens = []
    while True:
        tok = scanner.scan()
        tokens.append((tok.pos, tok.type, tok.lit))
        if tok.type is Token.EOF:
            return tokens


def test_scanner_positions() -> None:
    assert _scan_all("id-{{a-b >= 1.5}}") == [
        (1, Token.STRING, "id-"),
        (4, Token.LDBRACE, "{{"),
        (6, Token.IDENT, "a-b"),
        (10, Token.GEQ, ">="),
        (13, Token.FLOAT, "1.5"),
        (16, Token.RDBRACE, "}}"),
        (18, Token.EOF, ""),
    ]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("{{a - b}}", [Token.IDENT, Token.SUB, Token.IDENT]),
        ("{{-1}}", [Token.SUB, Token.INT]),
        ("{{a <- }}", [Token.IDENT, Token.LARROW]),
        ("{{a < b}}", [Token.IDENT, Token.LSS, Token.IDENT]),
        ("{{!a != b}}", [Token.NOT, Token.IDENT, Token.NEQ, Token.IDENT]),
        (
            "{{a ?? b ? c : d}}",
            [Token.IDENT, Token.COALESCING, Token.IDENT, Token.QUESTION, Token.IDENT, Token.COLON, Token.IDENT],
        ),
        (
            "{{true && false || defined(x)}}",
            [Token.BOOL, Token.LAND, Token.BOOL, Token.LOR, Token.DEFINED, Token.LPAREN, Token.IDENT, Token.RPAREN],
        ),
        (
            "{{a[0] * 2 / 3 % 4}}",
            [Token.IDENT, Token.LBRACK, Token.INT, Token.RBRACK, Token.MUL, Token.INT, Token.QUO, Token.INT, Token.REM, Token.INT],
        ),
        ("{{012}}", [Token.ILLEGAL]),
    ],
)
def test_scanner_operator_tokens(text: str, expected: list[Token]) -> None:
    types = [tok for _, tok, _ in _scan_all(text)]
    # strip the surrounding '{{', '}}' and EOF
    inner = types[1:-1]
    if Token.RDBRACE in inner:
        inner = inner[: inner.index(Token.RDBRACE)]
    assert inner == expected


def test_scanner_reports_quoted_yaml_scalars() -> None:
    scanner = Scanner("{{f <-}}:\n  a: '{{x}}'\n  b: c{{y}}")
    seen = {}
    while True:
        tok = scanner.scan()
        if tok.type is Token.EOF:
            break
        if tok.type is Token.IDENT and tok.lit in ("x", "y"):
            seen[tok.lit] = scanner.quoted()
    assert seen == {"x": True, "y": False}


def test_parser_positions() -> None:
    expr = Parser("{{a.b + c}}").parse()
    assert isinstance(expr, ParameterExpr)
    assert expr.pos() == 1
    assert expr.rdbrace == 10
    binary = expr.x
    assert isinstance(binary, BinaryExpr)
    assert binary.op is Token.ADD
    assert binary.pos() == 7
    assert isinstance(binary.x, SelectorExpr)
    assert binary.x.pos() == 5
    assert isinstance(binary.y, Ident)
    assert binary.y.pos() == 9


def test_concatenation_position() -> None:
    expr = Parser("x{{a}}").parse()
    assert isinstance(expr, BinaryExpr)
    assert expr.op is Token.CONCAT
    assert expr.pos() == 2
    assert isinstance(expr.y, ParameterExpr)


def test_precedence() -> None:
    expr = Parser("{{a || b && c == -d * e}}").parse().x
    assert isinstance(expr, BinaryExpr) and expr.op is Token.LOR
    land = expr.y
    assert isinstance(land, BinaryExpr) and land.op is Token.LAND
    eql = land.y
    assert isinstance(eql, BinaryExpr) and eql.op is Token.EQL
    mul = eql.y
    assert isinstance(mul, BinaryExpr) and mul.op is Token.MUL
    assert isinstance(mul.x, UnaryExpr) and mul.x.op is Token.SUB


def test_conditional_is_right_associative() -> None:
    expr = Parser("{{a ? b : c ? d : e}}").parse().x
    assert isinstance(expr, ConditionalExpr)
    assert isinstance(expr.y, ConditionalExpr)
    assert expr.pos() == 5
    assert expr.colon == 9


def test_left_arrow_argument() -> None:
    expr = Parser("{{f <-}}:\n  a: 1").parse()
    assert isinstance(expr, ParameterExpr)
    arrow = expr.x
    assert isinstance(arrow, LeftArrowExpr)
    assert arrow.larrow == 5
    assert arrow.rdbrace == 7
    assert arrow.arg is not None


def test_parse_error_lists_every_error() -> None:
    with pytest.raises(ParseError) as info:
        Parser("{{)}}{{(}}").parse()
    assert len(info.value.errors) >= 2
    assert str(info.value).startswith("col 3: unexpected token ')' (and ")


def test_position_calculator() -> None:
    calculator = PositionCalculator("ab\ncd\n\nef")
    assert calculator.position(1).line == 1
    assert calculator.position(2).column == 2
    position = calculator.position(4)
    assert (position.line, position.column) == (2, 1)
    position = calculator.position(8)
    assert (position.line, position.column) == (4, 1)
