"""Registry of the protocols a mock server can serve."""

from __future__ import annotations

import threading
from typing import Any, Optional

from test_executor.errors import ScenarioError

from .iterator import MockIterator


class ServerClosedError(ScenarioError):
    def __init__(self) -> None:
        super().__init__("server closed")


class Server:
    """A single protocol server fed from a shared :class:`MockIterator`."""

    def start(self) -> None:
        raise NotImplementedError

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the server answers its readiness check."""
        raise NotImplementedError

    def stop(self, timeout: Optional[float] = None) -> None:
        raise NotImplementedError

    def addr(self) -> str:
        raise NotImplementedError


class MockProtocol:
    name = ""

    def unmarshal_config(self, value: Any) -> Any:
        raise NotImplementedError

    def new_server(self, iterator: MockIterator, config: Any) -> Server:
        raise NotImplementedError


_lock = threading.Lock()
_registry: dict[str, MockProtocol] = {}
_defaults_loaded = False


def _load_defaults() -> None:
    global _defaults_loaded
    if _defaults_loaded:
        return
    _defaults_loaded = True
    from .grpc_server import GRPCMockProtocol
    from .http_server import HTTPMockProtocol

    for protocol in (HTTPMockProtocol(), GRPCMockProtocol()):
        _registry.setdefault(protocol.name, protocol)


def register(protocol: MockProtocol) -> None:
    with _lock:
        _load_defaults()
        _registry[protocol.name.lower()] = protocol


def unregister(name: str) -> None:
    with _lock:
        _load_defaults()
        _registry.pop(name.lower(), None)


def get(name: str) -> Optional[MockProtocol]:
    with _lock:
        _load_defaults()
        return _registry.get(name.lower())


def all_protocols() -> dict[str, MockProtocol]:
    with _lock:
        _load_defaults()
        return dict(_registry)


def reset() -> None:
    global _defaults_loaded
    with _lock:
        _registry.clear()
        _defaults_loaded = False
