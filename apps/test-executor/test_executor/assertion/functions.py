"""Assertion helpers exposed to templates as ``{{assert.<name>}}``."""

from __future__ import annotations

from typing import Any, Callable

from ..template.functions import LeftArrowFunction
from .builder import build
from .core import (
    And,
    Assertion,
    Contains,
    Length,
    NotContains,
    NotZero,
    Or,
    Regexp,
    greater_than,
    greater_than_or_equal,
    less_than,
    less_than_or_equal,
)


class _ListArgsFunction(LeftArrowFunction):
    """``{{assert.and <-}}: [...]`` or ``{{assert.and(a, b)}}``."""

    def __init__(self, data: Any, combine: Callable[[list[Assertion]], Assertion]) -> None:
        self._data = data
        self._combine = combine

    def __call__(self, *args: Any) -> Assertion:
        return self._combine([_as_assertion(arg, self._data) for arg in args])

    def unmarshal_arg(self, value: Any) -> Any:
        if not isinstance(value, list):
            raise TypeError("argument must be a list")
        return value

    def exec(self, arg: Any) -> Any:
        return self(*arg)


class _SingleArgFunction(LeftArrowFunction):
    """``{{assert.contains <-}}: <expect>`` or ``{{assert.contains(a)}}``."""

    def __init__(self, data: Any, wrap: Callable[[Assertion], Assertion]) -> None:
        self._data = data
        self._wrap = wrap

    def __call__(self, arg: Any) -> Assertion:
        return self._wrap(_as_assertion(arg, self._data))

    def unmarshal_arg(self, value: Any) -> Any:
        return _as_assertion(value, self._data)

    def exec(self, arg: Any) -> Any:
        if not isinstance(arg, Assertion):
            raise TypeError("argument must be an assertion")
        return self._wrap(arg)


def _as_assertion(value: Any, data: Any) -> Assertion:
    if isinstance(value, Assertion):
        return value
    return build(value, data)


class AssertFunctions:
    """Key extractor for the ``assert`` variable."""

    def __init__(self, data: Any = None) -> None:
        self._data = data

    def extract_by_key(self, key: str) -> tuple[Any, bool]:
        if key == "and":
            return _ListArgsFunction(self._data, And), True
        if key == "or":
            return _ListArgsFunction(self._data, Or), True
        if key == "contains":
            return _SingleArgFunction(self._data, Contains), True
        if key == "notContains":
            return _SingleArgFunction(self._data, NotContains), True
        functions: dict[str, Any] = {
            "notZero": NotZero(),
            "regexp": Regexp,
            "greaterThan": greater_than,
            "greaterThanOrEqual": greater_than_or_equal,
            "lessThan": less_than,
            "lessThanOrEqual": less_than_or_equal,
            "length": Length,
        }
        if key in functions:
            return functions[key], True
        return None, False
