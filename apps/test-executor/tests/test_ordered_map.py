from __future__ import annotations

from test_executor.ordered_map import OrderedMap


def _assert_index_consistent(mapping: OrderedMap) -> None:
    assert len(mapping._index) == len(mapping._items)
    for position, (key, _) in enumerate(mapping._items):
        assert mapping._index[key] == position


def test_insertion_order_is_kept() -> None:
    mapping = OrderedMap([("b", 1), ("a", 2), ("c", 3)])
    assert list(mapping) == ["b", "a", "c"]
    assert list(mapping.values()) == [1, 2, 3]
    _assert_index_consistent(mapping)


def test_overwrite_keeps_position() -> None:
    mapping = OrderedMap([("a", 1), ("b", 2), ("c", 3)])
    mapping["b"] = 20
    assert list(mapping.items()) == [("a", 1), ("b", 20), ("c", 3)]
    _assert_index_consistent(mapping)


def test_delete_reindexes_following_keys() -> None:
    mapping = OrderedMap([("a", 1), ("b", 2), ("c", 3), ("d", 4)])
    del mapping["b"]
    assert list(mapping) == ["a", "c", "d"]
    assert mapping["c"] == 3
    assert mapping["d"] == 4
    _assert_index_consistent(mapping)

    del mapping["a"]
    mapping["b"] = 5
    mapping["a"] = 6
    assert list(mapping.items()) == [("c", 3), ("d", 4), ("b", 5), ("a", 6)]
    _assert_index_consistent(mapping)

    for key in list(mapping):
        del mapping[key]
    assert len(mapping) == 0
    _assert_index_consistent(mapping)


def test_extract_by_key() -> None:
    mapping = OrderedMap([("a", None)])
    assert mapping.extract_by_key("a") == (None, True)
    assert mapping.extract_by_key("b") == (None, False)
    assert "a" in mapping
    assert "b" not in mapping


def test_copy_is_independent() -> None:
    mapping = OrderedMap([("a", 1)])
    copied = mapping.copy()
    copied["b"] = 2
    del copied["a"]
    assert list(mapping.items()) == [("a", 1)]
    _assert_index_consistent(copied)


def test_to_dict_converts_nested_maps() -> None:
    mapping = OrderedMap([("user", OrderedMap([("tags", [OrderedMap([("k", "v")])])]))])
    assert mapping.to_dict() == {"user": {"tags": [{"k": "v"}]}}
    assert type(mapping.to_dict()["user"]["tags"][0]) is dict
