"""Resolve identifier, selector and index chains against template data."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from ..errors import UnknownReferenceError
from .functions import DEFAULT_FUNCTIONS
from .nodes import BasicLit, Ident, IndexExpr, Node, SelectorExpr
from .token import Token

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
MISSING = object()


class NotDefinedError(UnknownReferenceError):
    """The first key of a reference does not exist in any scope."""


def build_query(node: Node) -> list[Any]:
    """Flatten ``a.b[0]`` into ``["a", "b", 0]``."""

    if isinstance(node, Ident):
        return [node.name]
    if isinstance(node, SelectorExpr):
        return [*build_query(node.x), node.sel.name]
    if isinstance(node, IndexExpr):
        index = node.index
        if not isinstance(index, BasicLit):
            raise UnknownReferenceError("expected int or string literal as index")
        key: Any = int(index.value) if index.kind is Token.INT else index.value
        return [*build_query(node.x), key]
    raise UnknownReferenceError(f'unknown node "{type(node).__name__}"')


def format_query(keys: list[Any]) -> str:
    parts = []
    for key in keys:
        parts.append(f"[{key}]" if isinstance(key, int) else f".{key}")
    return "".join(parts)


def extract_key(value: Any, key: Any) -> Any:
    """Return ``value[key]`` following the key extraction rules, or ``MISSING``."""

    if isinstance(key, int) and isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        if 0 <= key < len(value):
            return value[key]
        return MISSING
    extractor = getattr(value, "extract_by_key", None)
    if callable(extractor):
        found, ok = extractor(key)
        return found if ok else MISSING
    if isinstance(value, Mapping):
        return value[key] if key in value else MISSING
    if isinstance(value, BaseModel):
        for name, field in type(value).model_fields.items():
            if key in (name, field.alias):
                return getattr(value, name)
        return MISSING
    if value is None or isinstance(value, (str, bytes, int, float, bool, Sequence)):
        return MISSING
    if isinstance(key, str) and not key.startswith("_"):
        for attr in (key, _CAMEL_BOUNDARY.sub("_", key).lower()):
            found = getattr(value, attr, MISSING)
            if found is not MISSING:
                return found
    return MISSING


def extract_path(data: Any, keys: list[Any]) -> Any:
    value = data
    for i, key in enumerate(keys):
        value = extract_key(value, key)
        if value is MISSING:
            if i == 0:
                raise NotDefinedError(f'undefined variable "{key}"')
            raise UnknownReferenceError(f'"{format_query(keys[: i + 1])}" not found')
    return value


def extract(node: Node, data: Any) -> Any:
    """Resolve ``node`` against the built-in functions first, then ``data``."""

    keys = build_query(node)
    if keys and isinstance(keys[0], str) and keys[0] in DEFAULT_FUNCTIONS and len(keys) == 1:
        return DEFAULT_FUNCTIONS[keys[0]]
    return extract_path(data, keys)
