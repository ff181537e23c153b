"""FIFO queue of mocks shared by every protocol server."""

from __future__ import annotations

import threading
from typing import Any, Iterable, Optional

from test_executor.errors import MockViolation
from test_executor.schema import SchemaModel


class Mock(SchemaModel):
    """One expected request and the response sent back for it."""

    protocol: str = ""
    expect: Any = None
    response: Any = None


class NoMocksRemainError(MockViolation):
    def __init__(self) -> None:
        super().__init__("no mocks remain")


class MocksRemainError(MockViolation):
    """Raised by :meth:`MockIterator.stop` when queued mocks were never consumed."""

    def __init__(self, count: int) -> None:
        super().__init__(f"last {count} mocks remain")
        self.count = count


class MockIterator:
    def __init__(self, mocks: Optional[Iterable[Mock]] = None) -> None:
        self._lock = threading.Lock()
        self._mocks = list(mocks or [])
        self._position = 0

    def next(self) -> Mock:
        with self._lock:
            if self._position >= len(self._mocks):
                raise NoMocksRemainError()
            mock = self._mocks[self._position]
            self._position += 1
            return mock

    def remaining(self) -> int:
        with self._lock:
            return len(self._mocks) - self._position

    def stop(self) -> None:
        """Drain the queue; raise :class:`MocksRemainError` if anything was left."""

        with self._lock:
            count = len(self._mocks) - self._position
            self._position = len(self._mocks)
        if count > 0:
            raise MocksRemainError(count)
