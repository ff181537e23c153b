"""Assertion primitives.

An assertion raises :class:`AssertionFailure` (or a
:class:`MultiPathError`) when the actual value does not satisfy it and
returns None otherwise.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any, Callable, Iterable, Optional

from ..errors import AssertionFailure, MultiPathError, combine, wrap
from ..ordered_map import to_builtin
from ..template.functions import type_name

Equaler = Callable[[Any, Any], Optional[bool]]


class Assertion:
    def assert_value(self, value: Any) -> None:
        raise NotImplementedError


class FuncAssertion(Assertion):
    """Adapts a predicate or a raising callable into an assertion."""

    def __init__(self, func: Callable[[Any], Any]) -> None:
        self._func = func

    def assert_value(self, value: Any) -> None:
        result = self._func(value)
        if result is False:
            raise AssertionFailure("assertion error")


class Nop(Assertion):
    def assert_value(self, value: Any) -> None:
        return None


def format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return str(to_builtin(value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def deep_equal(actual: Any, expected: Any) -> bool:
    """Structural equality that keeps bools and numbers apart."""

    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        if set(actual.keys()) != set(expected.keys()):
            return False
        return all(deep_equal(actual[key], expected[key]) for key in expected)
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        if len(actual) != len(expected):
            return False
        return all(deep_equal(a, e) for a, e in zip(actual, expected))
    if type_name(actual) != type_name(expected):
        return False
    return actual == expected


class Equal(Assertion):
    def __init__(self, expected: Any, equalers: Iterable[Equaler] = ()) -> None:
        self.expected = expected
        self._equalers = list(equalers)

    def assert_value(self, value: Any) -> None:
        for equaler in self._equalers:
            result = equaler(self.expected, value)
            if result is True:
                return
            if result is False:
                break
        if deep_equal(value, self.expected):
            return
        if type_name(value) != type_name(self.expected):
            raise AssertionFailure(
                f"expected {type_name(self.expected)} ({format_value(self.expected)}) "
                f"but got {type_name(value)} ({format_value(value)})"
            )
        raise AssertionFailure(f"expected {format_value(self.expected)} but got {format_value(value)}")


class SequenceLength(Assertion):
    """The actual sequence has exactly ``expected`` items."""

    def __init__(self, expected: int) -> None:
        self.expected = expected

    def assert_value(self, value: Any) -> None:
        if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
            raise AssertionFailure(f"expected an array but got {type_name(value)}")
        if len(value) != self.expected:
            raise AssertionFailure(f"expected length {self.expected} but got {len(value)}")


class NotZero(Assertion):
    def assert_value(self, value: Any) -> None:
        if value is None or value is False or value == "" or (_is_number(value) and value == 0):
            raise AssertionFailure("expected not zero value")


def _contains(assertion: Assertion, value: Any) -> bool:
    if not isinstance(value, (list, tuple)):
        raise AssertionFailure("expected an array")
    for item in value:
        try:
            assertion.assert_value(item)
        except (AssertionFailure, MultiPathError):
            continue
        return True
    return False


class Contains(Assertion):
    def __init__(self, assertion: Assertion) -> None:
        self.assertion = assertion

    def assert_value(self, value: Any) -> None:
        if _contains(self.assertion, value):
            return
        if isinstance(self.assertion, Equal):
            expected = json.dumps(to_builtin(self.assertion.expected), ensure_ascii=False, default=str)
            raise AssertionFailure(f"doesn't contain {expected}")
        raise AssertionFailure("doesn't contain expected value")


class NotContains(Assertion):
    def __init__(self, assertion: Assertion) -> None:
        self.assertion = assertion

    def assert_value(self, value: Any) -> None:
        if _contains(self.assertion, value):
            raise AssertionFailure("contains the value")


class And(Assertion):
    def __init__(self, assertions: Iterable[Assertion]) -> None:
        self.assertions = list(assertions)

    def assert_value(self, value: Any) -> None:
        if not self.assertions:
            raise AssertionFailure("empty assertion list")
        errors: list[BaseException] = []
        for assertion in self.assertions:
            try:
                assertion.assert_value(value)
            except (AssertionFailure, MultiPathError) as exc:
                errors.append(exc)
        error = combine(errors)
        if error is not None:
            raise error


class Or(Assertion):
    def __init__(self, assertions: Iterable[Assertion]) -> None:
        self.assertions = list(assertions)

    def assert_value(self, value: Any) -> None:
        if not self.assertions:
            raise AssertionFailure("empty assertion list")
        errors: list[BaseException] = []
        for assertion in self.assertions:
            try:
                assertion.assert_value(value)
            except (AssertionFailure, MultiPathError) as exc:
                errors.append(exc)
                continue
            return
        raise AssertionFailure(f"all assertions failed: {combine(errors)}")


class Regexp(Assertion):
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        try:
            self._compiled: Optional[re.Pattern[str]] = re.compile(pattern)
            self._error: Optional[str] = None
        except re.error as exc:
            self._compiled = None
            self._error = f'invalid pattern "{pattern}": {exc}'

    def assert_value(self, value: Any) -> None:
        if self._compiled is None:
            raise AssertionFailure(self._error or "invalid pattern")
        if _is_number(value) or isinstance(value, bool):
            value = format_value(value)
        if not isinstance(value, str):
            raise AssertionFailure("expect string")
        if not self._compiled.search(value):
            raise AssertionFailure(f'does not match the pattern "{self.pattern}"')


def _to_number(value: Any) -> int | float:
    if _is_number(value):
        return value
    raise AssertionFailure(f"failed to convert {type_name(value)} to number")


class Compare(Assertion):
    """Numeric comparison of the actual value against ``expected``."""

    _MESSAGES = {
        "gt": "must be greater than {}",
        "ge": "must be equal or greater than {}",
        "lt": "must be less than {}",
        "le": "must be equal or less than {}",
    }

    def __init__(self, op: str, expected: Any) -> None:
        self.op = op
        self.expected = expected

    def assert_value(self, value: Any) -> None:
        expected, actual = _to_number(self.expected), _to_number(value)
        ok = {
            "gt": actual > expected,
            "ge": actual >= expected,
            "lt": actual < expected,
            "le": actual <= expected,
        }[self.op]
        if not ok:
            raise AssertionFailure(self._MESSAGES[self.op].format(format_value(expected)))


def greater_than(expected: Any) -> Assertion:
    return Compare("gt", expected)


def greater_than_or_equal(expected: Any) -> Assertion:
    return Compare("ge", expected)


def less_than(expected: Any) -> Assertion:
    return Compare("lt", expected)


def less_than_or_equal(expected: Any) -> Assertion:
    return Compare("le", expected)


class Length(Assertion):
    def __init__(self, expected: Any) -> None:
        self.expected = expected

    def assert_value(self, value: Any) -> None:
        if isinstance(self.expected, Assertion):
            assertion = self.expected
        elif isinstance(self.expected, int) and not isinstance(self.expected, bool):
            assertion = Equal(self.expected)
        else:
            raise AssertionFailure(f"invalid expected length {format_value(self.expected)}")
        if not isinstance(value, (str, list, tuple, Mapping)):
            raise AssertionFailure(f"can't get the length of {type_name(value)}")
        try:
            assertion.assert_value(len(value))
        except AssertionFailure as exc:
            raise wrap(exc, "length") from exc
