"""Insertion-ordered mapping used wherever YAML key order is observable."""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Iterable, Iterator


class OrderedMap(MutableMapping):
    """Mapping backed by an index table and an item list.

    ``_index[key]`` is always the position of ``key`` inside ``_items``.
    """

    def __init__(self, items: Iterable[tuple[Any, Any]] | MutableMapping | None = None) -> None:
        self._index: dict[Any, int] = {}
        self._items: list[list[Any]] = []
        if items is None:
            return
        pairs = items.items() if hasattr(items, "items") else items
        for key, value in pairs:
            self[key] = value

    def __getitem__(self, key: Any) -> Any:
        return self._items[self._index[key]][1]

    def __setitem__(self, key: Any, value: Any) -> None:
        position = self._index.get(key)
        if position is None:
            self._index[key] = len(self._items)
            self._items.append([key, value])
            return
        self._items[position][1] = value

    def __delitem__(self, key: Any) -> None:
        position = self._index.pop(key)
        del self._items[position]
        for i in range(position, len(self._items)):
            self._index[self._items[i][0]] = i

    def __iter__(self) -> Iterator[Any]:
        return iter([item[0] for item in self._items])

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __repr__(self) -> str:
        body = ", ".join(f"{key!r}: {value!r}" for key, value in self._items)
        return f"OrderedMap({{{body}}})"

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if key in self._index:
            return self[key], True
        return None, False

    def copy(self) -> "OrderedMap":
        return OrderedMap((key, value) for key, value in self._items)

    def to_dict(self) -> dict[Any, Any]:
        """Return a plain dict, converting nested ordered maps recursively."""

        return {key: to_builtin(value) for key, value in self._items}


def to_builtin(value: Any) -> Any:
    if isinstance(value, OrderedMap):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: to_builtin(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_builtin(item) for item in value]
    return value
