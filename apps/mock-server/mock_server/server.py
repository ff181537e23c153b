"""Aggregate mock server running one server per registered protocol."""

from __future__ import annotations

from concurrent import futures
from typing import Optional

import structlog
from pydantic import ValidationError

from test_executor.errors import combine, error_path, with_path, wrap
from test_executor.loader import validation_error

from . import protocol as registry
from .config import ServerConfig
from .iterator import MockIterator
from .protocol import Server, ServerClosedError

LOGGER = structlog.get_logger("mock-server")


class MockServer:
    """Starts every protocol server on a shared mock iterator.

    Mocks are consumed strictly in order across all protocols. Leftover mocks
    are reported by :meth:`stop` unless stopping a server failed.
    """

    def __init__(self, config: ServerConfig) -> None:
        self._iterator = MockIterator(config.mocks)
        self._servers: dict[str, Server] = {}
        protocols = config.protocols
        available = registry.all_protocols()
        for name in protocols:
            if str(name).lower() not in available:
                raise error_path(f"protocols.{name}", f'unknown protocol "{name}"')
        for name, protocol in available.items():
            value = next((v for k, v in protocols.items() if str(k).lower() == name), None)
            try:
                server_config = protocol.unmarshal_config(value)
            except ValidationError as exc:
                raise with_path(validation_error(exc), f"protocols.{name}") from exc
            try:
                self._servers[name] = protocol.new_server(self._iterator, server_config)
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, f"failed to create {name} server"), f"protocols.{name}") from exc
        self._logger = LOGGER.bind(mocks=len(config.mocks))

    def start(self) -> None:
        started: list[Server] = []
        try:
            for server in self._servers.values():
                server.start()
                started.append(server)
        except Exception:
            for server in started:
                server.stop()
            raise
        self._logger.info("mock_server_started", addrs=self.addrs())

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until every server passes its readiness check."""

        self._fan_out(lambda server: server.wait(timeout))

    def stop(self, timeout: Optional[float] = None) -> None:
        self._fan_out(lambda server: server.stop(timeout), ignore=(ServerClosedError,))
        self._logger.info("mock_server_stopped", remaining=self._iterator.remaining())
        self._iterator.stop()

    def addrs(self) -> dict[str, str]:
        return {name: server.addr() for name, server in self._servers.items()}

    def _fan_out(self, action, ignore: tuple[type[BaseException], ...] = ()) -> None:
        if not self._servers:
            return
        errors = []
        with futures.ThreadPoolExecutor(max_workers=len(self._servers)) as pool:
            jobs = {pool.submit(action, server): name for name, server in self._servers.items()}
            for job in futures.as_completed(jobs):
                exc = job.exception()
                if exc is not None and not isinstance(exc, ignore):
                    errors.append(with_path(exc, f"protocols.{jobs[job]}"))
        error = combine(errors)
        if error is not None:
            raise error

    def __enter__(self) -> "MockServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - context helper
        self.stop()
