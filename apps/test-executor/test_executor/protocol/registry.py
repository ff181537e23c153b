"""Process-wide registry of request protocols."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from ..assertion.core import Assertion
    from ..context import Context


class Invoker:
    """Sends one rendered request."""

    def invoke(self, ctx: "Context") -> tuple["Context", Any]:
        raise NotImplementedError


class AssertionBuilder:
    """Builds the response assertion against the current context."""

    def build(self, ctx: "Context") -> "Assertion":
        raise NotImplementedError


class Protocol:
    name = ""

    def unmarshal_request(self, value: Any) -> Invoker:
        raise NotImplementedError

    def unmarshal_expect(self, value: Any) -> AssertionBuilder:
        raise NotImplementedError


_lock = threading.Lock()
_registry: dict[str, Protocol] = {}
_defaults_loaded = False


def _load_defaults() -> None:
    global _defaults_loaded
    if _defaults_loaded:
        return
    _defaults_loaded = True
    from .grpc_protocol import GRPC
    from .http_protocol import HTTP

    for protocol in (HTTP(), GRPC()):
        _registry.setdefault(protocol.name, protocol)


def register(protocol: Protocol) -> None:
    with _lock:
        _load_defaults()
        _registry[protocol.name.lower()] = protocol


def unregister(name: str) -> None:
    with _lock:
        _load_defaults()
        _registry.pop(name.lower(), None)


def get(name: str) -> Optional[Protocol]:
    with _lock:
        _load_defaults()
        return _registry.get(name.lower())


def all_protocols() -> list[Protocol]:
    with _lock:
        _load_defaults()
        return list(_registry.values())


def reset() -> None:
    """Drop custom registrations; the built-in protocols are loaded again on next use."""

    global _defaults_loaded
    with _lock:
        _registry.clear()
        _defaults_loaded = False
