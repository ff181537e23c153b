"""HTTP header container and body codecs selected by media type."""

from __future__ import annotations

import gzip
import json
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Optional
from urllib.parse import parse_qs, urlencode

from ..ordered_map import OrderedMap, to_builtin
from ..template.functions import to_string, type_name

DEFAULT_MEDIA_TYPE = "application/json"


def canonical_header_key(name: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


class Header(OrderedMap):
    """Multi-valued header map with case-insensitive key extraction."""

    def add(self, name: str, value: str) -> None:
        key = canonical_header_key(name)
        if key in self:
            self[key].append(value)
        else:
            self[key] = [value]

    def first(self, name: str, default: str = "") -> str:
        values = self.get(canonical_header_key(name))
        return values[0] if values else default

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if not isinstance(key, str):
            return None, False
        return super().extract_by_key(canonical_header_key(key))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "Header":
        header = cls()
        for name, value in pairs:
            header.add(name, value)
        return header


def media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def convert_strings_map(value: Any) -> dict[str, list[str]]:
    """Convert a mapping of scalars or lists into ``{name: [values]}``."""

    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"expected map but got {type_name(value)}")
    result: dict[str, list[str]] = {}
    for key, item in value.items():
        items = item if isinstance(item, list) else [item]
        result[to_string(key)] = [to_string(v) for v in items if v is not None]
    return result


def _marshal_json(value: Any) -> bytes:
    return json.dumps(to_builtin(value), ensure_ascii=False).encode("utf-8")


def _marshal_text(value: Any) -> bytes:
    if value is None:
        raise TypeError("invalid value")
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError(f"expected string but got {type_name(value)}")


def _marshal_form(value: Any) -> bytes:
    return urlencode(convert_strings_map(value), doseq=True).encode("utf-8")


MARSHALERS: dict[str, Callable[[Any], bytes]] = {
    "application/json": _marshal_json,
    "text/plain": _marshal_text,
    "application/x-www-form-urlencoded": _marshal_form,
}


def marshaler_for(content_type: str) -> tuple[str, Callable[[Any], bytes]]:
    kind = media_type(content_type)
    if kind in MARSHALERS:
        return kind, MARSHALERS[kind]
    return DEFAULT_MEDIA_TYPE, MARSHALERS[DEFAULT_MEDIA_TYPE]


def _unmarshal_json(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"), object_pairs_hook=OrderedMap)


def _unmarshal_text(data: bytes) -> Any:
    return data.decode("utf-8", errors="replace")


def _unmarshal_binary(data: bytes) -> Any:
    return data


def _unmarshal_form(data: bytes) -> Any:
    return OrderedMap(parse_qs(data.decode("utf-8", errors="replace"), keep_blank_values=True))


UNMARSHALERS: dict[str, Callable[[bytes], Any]] = {
    "application/json": _unmarshal_json,
    "text/plain": _unmarshal_text,
    "text/html": _unmarshal_text,
    "application/octet-stream": _unmarshal_binary,
    "application/x-www-form-urlencoded": _unmarshal_form,
}


def unmarshaler_for(
    content_type: str, fallback: str = DEFAULT_MEDIA_TYPE
) -> tuple[str, Callable[[bytes], Any]]:
    """Pick the unmarshaler of ``content_type``, or of ``fallback`` for unknown types."""

    kind = media_type(content_type)
    if kind in UNMARSHALERS:
        return kind, UNMARSHALERS[kind]
    return fallback, UNMARSHALERS[fallback]


def decode_body(data: bytes, header: Header) -> Optional[Any]:
    """Inflate and unmarshal a body according to its headers."""

    if header.first("Content-Encoding").lower() == "gzip":
        data = gzip.decompress(data)
    if not data:
        return None
    kind, unmarshal = unmarshaler_for(header.first("Content-Type"))
    try:
        return unmarshal(data)
    except ValueError as exc:
        raise ValueError(
            f"failed to unmarshal response body as {kind}: {data.decode('utf-8', errors='replace')}: {exc}"
        ) from exc
