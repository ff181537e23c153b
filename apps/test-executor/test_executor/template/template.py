"""Template evaluation.

A template is a string containing ``{{ expr }}`` parameters. When the whole
string is a single parameter the result keeps the native type of the
expression, otherwise the pieces are concatenated into a string.
"""

from __future__ import annotations

import inspect
import math
import operator
import re
from typing import Any, Callable, Optional

from .. import yamlutil
from ..errors import CompileError, PathError, UnknownReferenceError, with_path, wrap
from ..ordered_map import OrderedMap
from .functions import FuncCall, LeftArrowFunction, to_string, type_name
from .lookup import extract
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
from .parser import ParseError, Parser
from .token import Token

_PLAIN_KEY = re.compile(r"^[A-Za-z_][\w-]*$")


class TemplateError(PathError):
    """Template execution failed."""


class Template:
    def __init__(self, text: str) -> None:
        self.text = text
        parser = Parser(text)
        try:
            self._expr: Optional[Node] = parser.parse()
        except ParseError as exc:
            raise CompileError(f'failed to parse "{text}": {exc}') from exc
        self._arg_mode = False
        self._stash: dict[str, Any] = {}

    @classmethod
    def _for_arg(cls, expr: Optional[Node], stash: dict[str, Any]) -> "Template":
        tmpl = cls.__new__(cls)
        tmpl.text = ""
        tmpl._expr = expr
        tmpl._arg_mode = True
        tmpl._stash = stash
        return tmpl

    def execute(self, data: Any) -> Any:
        try:
            return self._execute_expr(self._expr, data)
        except Exception as exc:  # noqa: BLE001 - every failure is reported with the template text
            if not self.text:
                raise
            if "\n" in self.text:
                raise wrap(exc, f"failed to execute: \n{self.text}\n") from exc
            raise wrap(exc, f"failed to execute: {self.text}") from exc

    def _execute_expr(self, expr: Optional[Node], data: Any) -> Any:
        if expr is None:
            return ""
        if isinstance(expr, BasicLit):
            return _literal_value(expr)
        if isinstance(expr, ParameterExpr):
            return self._execute_parameter(expr, data)
        if isinstance(expr, ParenExpr):
            return self._execute_expr(expr.x, data)
        if isinstance(expr, (Ident, SelectorExpr, IndexExpr)):
            return execute(extract(expr, data), data)
        if isinstance(expr, CallExpr):
            return self._execute_call(expr, data)
        if isinstance(expr, LeftArrowExpr):
            return self._execute_left_arrow(expr, data)
        if isinstance(expr, UnaryExpr):
            return self._execute_unary(expr, data)
        if isinstance(expr, BinaryExpr):
            return self._execute_binary(expr, data)
        if isinstance(expr, ConditionalExpr):
            return self._execute_conditional(expr, data)
        if isinstance(expr, DefinedExpr):
            return _execute_defined(expr, data)
        raise TemplateError(f'unknown expression "{type(expr).__name__}"')

    def _execute_parameter(self, expr: ParameterExpr, data: Any) -> Any:
        if expr.x is None:
            return ""
        value = self._execute_expr(expr.x, data)
        if not self._arg_mode:
            return value
        # Left arrow arguments are YAML text: functions are replaced by a
        # placeholder and restored after the argument is decoded.
        if not _is_data(value):
            name = f"func-{len(self._stash)}"
            self._stash[name] = value
            if expr.quoted:
                return f"'{{{{{name}}}}}'"
            return f"{{{{{name}}}}}"
        scalar = not isinstance(value, (list, dict, OrderedMap)) and value is not None
        if expr.literal and scalar:
            # block scalars hold the text as is
            return to_string(value)
        if expr.quoted and scalar:
            value = to_string(value)
        return yamlutil.dump_inline(value)

    def _execute_unary(self, expr: UnaryExpr, data: Any) -> Any:
        x = self._execute_expr(expr.x, data)
        if expr.op is Token.SUB and _is_number(x):
            return -x
        if expr.op is Token.NOT and isinstance(x, bool):
            return not x
        raise TemplateError(f"invalid operation: operator {expr.op} not defined on {_type_value(x)}")

    def _execute_binary(self, expr: BinaryExpr, data: Any) -> Any:
        if expr.op is Token.COALESCING:
            try:
                x = self._execute_expr(expr.x, data)
            except UnknownReferenceError:
                x = None
            return self._execute_expr(expr.y, data) if x is None else x
        x = self._execute_expr(expr.x, data)
        if expr.op in (Token.LAND, Token.LOR):
            _require_bool(expr.op, x)
            if (expr.op is Token.LAND and not x) or (expr.op is Token.LOR and x):
                return x
            y = self._execute_expr(expr.y, data)
            _require_bool(expr.op, y)
            return y
        y = self._execute_expr(expr.y, data)
        if expr.op is Token.CONCAT:
            return self._concat(expr, x, y)
        if expr.op is Token.ADD:
            if not expr.quoted and _is_constant_number(expr.x) and _is_constant_number(expr.y):
                return x + y
            return self._concat(expr, x, y)
        if expr.op in (Token.EQL, Token.NEQ):
            return _equal(x, y) is (expr.op is Token.EQL)
        if expr.op in _COMPARISONS:
            if not (_is_number(x) and _is_number(y)) and not (isinstance(x, str) and isinstance(y, str)):
                raise _not_defined(x, expr.op, y)
            return _COMPARISONS[expr.op](x, y)
        if expr.op in _ARITHMETIC:
            if not (_is_number(x) and _is_number(y)):
                raise _not_defined(x, expr.op, y)
            return _ARITHMETIC[expr.op](x, y)
        raise _not_defined(x, expr.op, y)

    def _concat(self, expr: BinaryExpr, x: Any, y: Any) -> str:
        try:
            xs, ys = to_string(x), to_string(y)
        except TypeError:
            raise _not_defined(x, Token.ADD, y) from None
        if self._arg_mode and isinstance(expr.y, ParameterExpr):
            ys = add_indent(ys, xs)
        return xs + ys

    def _execute_conditional(self, expr: ConditionalExpr, data: Any) -> Any:
        condition = self._execute_expr(expr.condition, data)
        if not isinstance(condition, bool):
            raise TemplateError(f"invalid operation: operator ? not defined on {_type_value(condition)}")
        return self._execute_expr(expr.x if condition else expr.y, data)

    def _execute_call(self, expr: CallExpr, data: Any) -> Any:
        fn = self._execute_expr(expr.fun, data)
        name = expr.fun.name if isinstance(expr.fun, Ident) else "function"
        if isinstance(expr.fun, SelectorExpr):
            name = expr.fun.sel.name
        if not callable(fn):
            raise TemplateError(f"{name} is not a function")
        _check_arity(fn, len(expr.args))
        args = [self._execute_expr(arg, data) for arg in expr.args]
        return fn(*args)

    def _execute_left_arrow(self, expr: LeftArrowExpr, data: Any) -> Any:
        fn = self._execute_expr(expr.fun, data)
        if not isinstance(fn, LeftArrowFunction):
            raise TemplateError(f"expect template function but got {type_name(fn)}")
        if expr.arg is None:
            return FuncCall(fn)
        text = Template._for_arg(expr.arg, self._stash)._execute_expr(expr.arg, data)
        if not isinstance(text, str):
            raise TemplateError(f"expect string but got {type_name(text)}")
        value = yamlutil.load(text)
        if self._stash:
            value = execute(value, self._stash)
        return fn.exec(fn.unmarshal_arg(value))


def add_indent(text: str, prefix: str) -> str:
    """Indent continuation lines of ``text`` to the width of the last line of ``prefix``.

    ``- a: 1\\nb: 2`` becomes ``- a: 1\\n  b: 2`` for the prefix ``- ``.
    """

    if "\n" not in text or not prefix:
        return text
    indent = " " * len(prefix.split("\n")[-1])
    lines = text.split("\n")
    return "\n".join([lines[0], *[f"{indent}{line}" if line else line for line in lines[1:]]])


def execute(value: Any, data: Any) -> Any:
    """Render every template string found in ``value``.

    Mappings and lists are copied, never modified in place. A mapping whose
    only key renders to a left arrow call is replaced by the call's result.
    """

    if isinstance(value, (OrderedMap, dict)):
        return _execute_mapping(value, data)
    if isinstance(value, list):
        result = []
        for i, item in enumerate(value):
            try:
                result.append(execute(item, data))
            except Exception as exc:  # noqa: BLE001
                raise with_path(exc, f"[{i}]") from exc
        return result
    if isinstance(value, str):
        if "{{" not in value:
            return value
        return Template(value).execute(data)
    return value


def key_path(key: Any) -> str:
    text = str(key)
    if _PLAIN_KEY.match(text):
        return f".{text}"
    return f".'{text}'"


def _execute_mapping(value: OrderedMap | dict, data: Any) -> Any:
    result: OrderedMap | dict = type(value)() if isinstance(value, OrderedMap) else {}
    for key, item in value.items():
        path = key_path(key)
        new_key = execute(key, data) if isinstance(key, str) else key
        if isinstance(new_key, FuncCall):
            if len(value) != 1:
                raise with_path(TemplateError("invalid left arrow function call"), path)
            try:
                return call_left_arrow(new_key.func, item, data)
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "failed to execute left arrow function"), path) from exc
        try:
            result[new_key] = execute(item, data)
        except Exception as exc:  # noqa: BLE001
            raise with_path(exc, path) from exc
    return result


def call_left_arrow(fn: LeftArrowFunction, value: Any, data: Any) -> Any:
    """Run ``fn`` with ``value`` rendered against ``data`` as its argument."""

    if value is not None:
        value = execute(value, data)
    return fn.exec(fn.unmarshal_arg(value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _literal_value(lit: BasicLit) -> Any:
    if lit.kind is Token.INT:
        return int(lit.value)
    if lit.kind is Token.FLOAT:
        return float(lit.value)
    if lit.kind is Token.BOOL:
        return lit.value == "true"
    return lit.value


def _is_constant_number(expr: Optional[Node]) -> bool:
    """Whether ``expr`` is built from numeric literals only, like ``-(1 + 2)``."""

    if isinstance(expr, BasicLit):
        return expr.kind in (Token.INT, Token.FLOAT)
    if isinstance(expr, ParenExpr):
        return _is_constant_number(expr.x)
    if isinstance(expr, UnaryExpr):
        return expr.op is Token.SUB and _is_constant_number(expr.x)
    if isinstance(expr, BinaryExpr):
        if expr.op is not Token.ADD and expr.op not in _ARITHMETIC:
            return False
        return _is_constant_number(expr.x) and _is_constant_number(expr.y)
    return False


def _execute_defined(expr: DefinedExpr, data: Any) -> bool:
    if not isinstance(expr.arg, (Ident, SelectorExpr, IndexExpr)):
        raise TemplateError("invalid argument to defined()")
    try:
        extract(expr.arg, data)
    except UnknownReferenceError:
        return False
    return True


def _type_value(value: Any) -> str:
    if value is None:
        return "nil"
    try:
        text = to_string(value)
    except TypeError:
        text = repr(value)
    return f"{type_name(value)}({text})"


def _not_defined(x: Any, op: Token, y: Any) -> TemplateError:
    return TemplateError(f"invalid operation: {_type_value(x)} {op} {_type_value(y)} not defined")


def _require_bool(op: Token, value: Any) -> None:
    if not isinstance(value, bool):
        raise TemplateError(f"invalid operation: operator {op} not defined on {_type_value(value)}")


def _equal(x: Any, y: Any) -> bool:
    if isinstance(x, bool) is not isinstance(y, bool):
        return False
    return x == y


def _quo(x: Any, y: Any) -> Any:
    if y == 0:
        raise TemplateError("invalid operation: division by zero")
    if isinstance(x, int) and isinstance(y, int):
        # integer division truncates toward zero
        quotient = abs(x) // abs(y)
        return quotient if (x < 0) == (y < 0) else -quotient
    return x / y


def _rem(x: Any, y: Any) -> Any:
    if y == 0:
        raise TemplateError("invalid operation: division by zero")
    if isinstance(x, int) and isinstance(y, int):
        return x - y * _quo(x, y)
    return math.fmod(x, y)


_ARITHMETIC: dict[Token, Callable[[Any, Any], Any]] = {
    Token.SUB: operator.sub,
    Token.MUL: operator.mul,
    Token.QUO: _quo,
    Token.REM: _rem,
}

_COMPARISONS: dict[Token, Callable[[Any, Any], bool]] = {
    Token.LSS: operator.lt,
    Token.LEQ: operator.le,
    Token.GTR: operator.gt,
    Token.GEQ: operator.ge,
}


def _is_data(value: Any) -> bool:
    if value is None or isinstance(value, (str, bytes, bool, int, float)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_data(item) for item in value)
    if isinstance(value, (dict, OrderedMap)):
        return all(_is_data(item) for item in value.values())
    return False


def _check_arity(fn: Callable[..., Any], count: int) -> None:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return
    params = signature.parameters.values()
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    required = [p for p in positional if p.default is inspect.Parameter.empty]
    if not len(required) <= count <= len(positional):
        raise TemplateError(
            f"expected function argument number is {len(positional)} but specified {count} arguments"
        )
