from __future__ import annotations

import pytest

from test_executor.assertion.builder import build, build_header_assertion
from test_executor.context import Context
from test_executor.errors import AssertionFailure, MultiPathError
from test_executor.ordered_map import OrderedMap
from test_executor.protocol.http_codec import Header


def test_equal_mapping_passes() -> None:
    assertion = build(OrderedMap([("id", 1), ("name", "alice")]), Context())
    assertion.assert_value({"id": 1, "name": "alice", "extra": True})


def test_mismatch_reports_path() -> None:
    assertion = build(OrderedMap([("user", OrderedMap([("id", 1)]))]), Context())
    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value({"user": {"id": 2}})
    assert str(info.value) == ".user.id: expected 1 but got 2"


def test_type_mismatch_message() -> None:
    assertion = build(OrderedMap([("id", 1)]), Context())
    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value({"id": "1"})
    assert "expected int (1) but got string (1)" in str(info.value)


def test_missing_key() -> None:
    assertion = build(OrderedMap([("email", "a@example.com")]), Context())
    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value({})
    assert '".email" not found' in str(info.value)


def test_every_failure_is_collected() -> None:
    assertion = build(OrderedMap([("a", 1), ("b", 2)]), Context())
    with pytest.raises(MultiPathError) as info:
        assertion.assert_value({"a": 0, "b": 0})
    assert len(info.value.errors) == 2
    assert str(info.value).startswith("2 errors occurred:")


def test_list_items_are_checked_by_index() -> None:
    assertion = build(["a", "b"], Context())
    assertion.assert_value(["a", "b"])
    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value(["a", "c"])
    assert str(info.value).startswith("[1]: ")

    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value(["a", "b", "c"])
    assert str(info.value) == "expected length 2 but got 3"

    with pytest.raises(MultiPathError) as multi:
        assertion.assert_value(["a"])
    assert "expected length 2 but got 1" in str(multi.value)
    assert '"[1]" not found' in str(multi.value)


def test_nested_list_length_is_reported_at_its_path() -> None:
    assertion = build(OrderedMap([("tags", ["x"])]), Context())
    with pytest.raises(AssertionFailure) as info:
        assertion.assert_value({"tags": ["x", "y"]})
    assert str(info.value) == ".tags: expected length 1 but got 2"
    with pytest.raises(MultiPathError) as multi:
        assertion.assert_value({"tags": "x"})
    assert ".tags: expected an array but got string" in str(multi.value)


def test_assert_functions() -> None:
    ctx = Context()
    build("{{assert.notZero}}", ctx).assert_value(3)
    build('{{assert.regexp("^ab")}}', ctx).assert_value("abc")
    build("{{assert.greaterThan(3)}}", ctx).assert_value(5)
    with pytest.raises(AssertionFailure) as info:
        build("{{assert.greaterThan(3)}}", ctx).assert_value(2)
    assert "must be greater than 3" in str(info.value)
    with pytest.raises(AssertionFailure):
        build('{{assert.regexp("^ab")}}', ctx).assert_value("xab")


def test_templates_use_context_vars() -> None:
    ctx = Context().with_vars({"expected": "alice"})
    build(OrderedMap([("name", "{{vars.expected}}")]), ctx).assert_value({"name": "alice"})


def test_header_assertion_matches_any_value() -> None:
    header = Header()
    header.add("content-type", "application/json")
    header.add("X-Trace", "a")
    header.add("X-Trace", "b")
    assertion = build_header_assertion(OrderedMap([("Content-Type", "application/json"), ("x-trace", "b")]), Context())
    assertion.assert_value(header)
    with pytest.raises(AssertionFailure):
        build_header_assertion(OrderedMap([("X-Trace", "c")]), Context()).assert_value(header)
