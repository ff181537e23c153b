"""Compile expectation documents into assertions."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, Optional

from ..errors import AssertionFailure, MultiPathError, PathError, combine, with_path, wrap
from ..ordered_map import OrderedMap
from ..template.lookup import MISSING, extract_key, format_query
from ..template.functions import FuncCall
from ..template.template import call_left_arrow, execute, key_path
from .core import Assertion, Contains, Equal, Equaler, FuncAssertion, SequenceLength


class PathAssertion(Assertion):
    """Runs ``assertion`` against the value found at ``keys``."""

    def __init__(self, keys: list[Any], assertion: Assertion) -> None:
        self.keys = keys
        self.assertion = assertion

    @property
    def path(self) -> str:
        return "".join(f"[{key}]" if isinstance(key, int) else key_path(key) for key in self.keys)

    def assert_value(self, value: Any) -> None:
        actual = value
        for i, key in enumerate(self.keys):
            actual = extract_key(actual, key)
            if actual is MISSING:
                raise AssertionFailure(f'"{format_query(self.keys[: i + 1])}" not found')
        try:
            self.assertion.assert_value(actual)
        except (PathError, MultiPathError) as exc:
            raise with_path(exc, self.path) from exc


class AllOf(Assertion):
    """Runs every assertion and reports all failures together."""

    def __init__(self, assertions: Iterable[Assertion]) -> None:
        self.assertions = list(assertions)

    def assert_value(self, value: Any) -> None:
        errors: list[BaseException] = []
        for assertion in self.assertions:
            try:
                assertion.assert_value(value)
            except (PathError, MultiPathError) as exc:
                errors.append(exc)
        error = combine(errors)
        if error is not None:
            raise error


def build(expect: Any, data: Any = None, equalers: Iterable[Equaler] = ()) -> Assertion:
    """Build an assertion from an expectation value.

    Mappings and lists assert each child at its key or index. Strings are
    rendered as templates against ``data``; a rendered assertion is used as
    is and anything else is compared for equality.
    """

    equalers = list(equalers)
    if expect is None:
        return AllOf([])
    try:
        return AllOf(_build([], expect, data, equalers))
    except Exception as exc:  # noqa: BLE001 - surfaced as a build failure
        raise wrap(exc, "failed to build assertion") from exc


def _build(keys: list[Any], expect: Any, data: Any, equalers: list[Equaler]) -> list[Assertion]:
    if isinstance(expect, (Mapping, OrderedMap)):
        assertions: list[Assertion] = []
        for key, item in expect.items():
            rendered = execute(key, data) if isinstance(key, str) else key
            if isinstance(rendered, FuncCall):
                return _build(keys, call_left_arrow(rendered.func, item, data), data, equalers)
            assertions.extend(_build([*keys, rendered], item, data, equalers))
        return assertions
    if isinstance(expect, list):
        assertions = [PathAssertion(keys, SequenceLength(len(expect)))]
        for i, item in enumerate(expect):
            assertions.extend(_build([*keys, i], item, data, equalers))
        return assertions
    if isinstance(expect, str):
        rendered = execute(expect, data) if "{{" in expect else expect
        if isinstance(rendered, str):
            return [PathAssertion(keys, Equal(rendered, equalers))]
        return _build(keys, rendered, data, equalers)
    if isinstance(expect, Assertion):
        return [PathAssertion(keys, expect)]
    if callable(expect):
        return [PathAssertion(keys, FuncAssertion(expect))]
    return [PathAssertion(keys, Equal(expect, equalers))]


def stringify(value: Any) -> Any:
    """Convert bools and integers to strings, recursing into containers."""

    if isinstance(value, (Mapping, OrderedMap)):
        result = OrderedMap()
        for key, item in value.items():
            result[key] = stringify(item)
        return result
    if isinstance(value, list):
        return [stringify(item) for item in value]
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return value


def build_header_assertion(expect: Optional[Mapping], data: Any = None) -> Assertion:
    """Header values are multi-valued: scalars are wrapped in ``Contains``."""

    if not expect:
        return AllOf([])
    expects = OrderedMap()
    for name, value in expect.items():
        key = stringify(name)
        if not isinstance(key, str):
            raise AssertionFailure(f"name must be string but {type(name).__name__}")
        try:
            rendered = execute(value, data)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "failed to execute template"), key_path(key)) from exc
        rendered = stringify(rendered)
        if isinstance(rendered, str):
            rendered = Contains(Equal(rendered))
        elif isinstance(rendered, Assertion):
            rendered = Contains(rendered)
        elif not isinstance(rendered, list):
            rendered = Contains(build(rendered))
        expects[key] = rendered
    return build(expects)
