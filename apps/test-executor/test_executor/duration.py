"""Duration strings such as ``1m30s`` or ``500ms``."""

from __future__ import annotations

import re
from datetime import timedelta

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration string made of decimal numbers with unit suffixes."""

    original = text
    text = text.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f'invalid duration "{original}"')
    total = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            if re.match(r"(\d+(?:\.\d*)?|\.\d+)$", text[pos:]):
                raise ValueError(f'missing unit in duration "{original}"')
            raise ValueError(f'invalid duration "{original}"')
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=sign * total / 1_000)


def _split_fraction(value: int, digits: int) -> tuple[str, int]:
    scale = 10**digits
    fraction = str(value % scale).rjust(digits, "0").rstrip("0")
    return ("." + fraction if fraction else ""), value // scale


def format_duration(value: float | timedelta) -> str:
    """Format seconds (or a timedelta) the way duration strings are written."""

    if isinstance(value, timedelta):
        value = value.total_seconds()
    nanos = round(value * 1_000_000_000)
    negative = nanos < 0
    nanos = abs(nanos)
    if nanos == 0:
        return "0s"
    if nanos < 1_000:
        text = f"{nanos}ns"
    elif nanos < 1_000_000:
        fraction, whole = _split_fraction(nanos, 3)
        text = f"{whole}{fraction}µs"
    elif nanos < 1_000_000_000:
        fraction, whole = _split_fraction(nanos, 6)
        text = f"{whole}{fraction}ms"
    else:
        fraction, seconds = _split_fraction(nanos, 9)
        text = f"{seconds % 60}{fraction}s"
        minutes = seconds // 60
        if minutes:
            text = f"{minutes % 60}m{text}"
            if minutes // 60:
                text = f"{minutes // 60}h{text}"
    return "-" + text if negative else text
