"""Built-in template functions and the left arrow function protocol."""

from __future__ import annotations

from typing import Any, Callable

from ..ordered_map import OrderedMap


class LeftArrowFunction:
    """A function that receives a YAML document as its argument.

    Used as ``{{name <-}}: <yaml>``. ``unmarshal_arg`` converts the decoded
    YAML value into the argument passed to ``exec``.
    """

    def unmarshal_arg(self, value: Any) -> Any:
        return value

    def exec(self, arg: Any) -> Any:
        raise NotImplementedError


class FuncCall:
    """Result of ``'{{f <-}}'`` used as a mapping key; the value becomes the argument."""

    def __init__(self, func: LeftArrowFunction) -> None:
        self.func = func

    def __repr__(self) -> str:
        return f"FuncCall({type(self.func).__name__})"


def type_name(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bytes):
        return "bytes"
    if isinstance(value, (dict, OrderedMap)):
        return "map"
    if isinstance(value, (list, tuple)):
        return "list"
    return type(value).__name__


def to_string(value: Any) -> str:
    """Format scalars the way templates concatenate them."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if value is None:
        return ""
    raise TypeError(f"can't convert {type_name(value)} to string")


def convert_to_int(value: Any) -> int:
    if value is None:
        raise TypeError("can't convert nil to int")
    if isinstance(value, bool):
        raise TypeError("can't convert bool to int")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ValueError(f'can\'t convert "{value}" to int') from exc
    raise TypeError(f"can't convert {type_name(value)} to int")


def convert_to_uint(value: Any) -> int:
    result = convert_to_int(value) if not isinstance(value, float) else int(value)
    if result < 0:
        raise ValueError(f"can't convert {result} to uint")
    return result


def convert_to_float(value: Any) -> float:
    if value is None:
        raise TypeError("can't convert nil to float")
    if isinstance(value, bool):
        raise TypeError("can't convert bool to float")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f'can\'t convert "{value}" to float') from exc
    raise TypeError(f"can't convert {type_name(value)} to float")


def convert_to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in ("true", "t", "1"):
            return True
        if lowered in ("false", "f", "0"):
            return False
        raise ValueError(f'can\'t convert "{value}" to bool')
    raise TypeError(f"can't convert {type_name(value)} to bool")


def convert_to_string(value: Any) -> str:
    try:
        return to_string(value)
    except TypeError:
        raise TypeError(f"can't convert {type_name(value)} to string") from None


def length(value: Any) -> int:
    if isinstance(value, (str, bytes, list, tuple, dict, OrderedMap)):
        return len(value)
    raise TypeError(f"can't get the length of {type_name(value)}")


DEFAULT_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "int": convert_to_int,
    "uint": convert_to_uint,
    "float": convert_to_float,
    "bool": convert_to_bool,
    "string": convert_to_string,
    "len": length,
}
