"""Per-node duration measurement."""

from __future__ import annotations

import threading
import time
from typing import Optional


class DurationMeasurer:
    """Accumulates the time during which at least one run of the node is active.

    Starting or stopping a measurer also starts or stops its parent, so a
    parent's duration covers the wall-clock span of its descendants rather
    than their sum.
    """

    def __init__(self, parent: Optional["DurationMeasurer"] = None) -> None:
        self.parent = parent
        self._lock = threading.Lock()
        self._running = 0
        self._duration = 0.0
        self._started_at = 0.0

    def start(self) -> None:
        if self.parent is not None:
            self.parent.start()
        with self._lock:
            if self._running == 0:
                self._started_at = time.perf_counter()
            self._running += 1

    def stop(self) -> None:
        if self.parent is not None:
            self.parent.stop()
        with self._lock:
            self._running -= 1
            if self._running == 0:
                self._duration += time.perf_counter() - self._started_at

    def spawn(self) -> "DurationMeasurer":
        return DurationMeasurer(self)

    @property
    def duration(self) -> float:
        with self._lock:
            return self._duration
