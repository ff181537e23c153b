"""Ordered log records of a reporter node."""

from __future__ import annotations

import threading
from typing import Optional


class LogRecorder:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[str] = []
        self._errors: list[int] = []
        self._skip: Optional[int] = None

    def spawn(self) -> "LogRecorder":
        return LogRecorder()

    def info(self, message: str) -> None:
        with self._lock:
            self._records.append(message)

    def error(self, message: str) -> None:
        with self._lock:
            self._records.append(message)
            self._errors.append(len(self._records) - 1)

    def skip(self, message: str) -> None:
        with self._lock:
            self._records.append(message)
            self._skip = len(self._records) - 1

    def all(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def info_logs(self) -> list[str]:
        with self._lock:
            ignore = set(self._errors)
            if self._skip is not None:
                ignore.add(self._skip)
            return [record for i, record in enumerate(self._records) if i not in ignore]

    def error_logs(self) -> list[str]:
        with self._lock:
            return [self._records[i] for i in self._errors]

    def skip_log(self) -> Optional[str]:
        with self._lock:
            if self._skip is None:
                return None
            return self._records[self._skip]
