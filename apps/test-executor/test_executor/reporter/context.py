"""State shared by every node of one reporter tree."""

from __future__ import annotations

import sys
import threading
from typing import IO, Optional

from rich.color import ColorSystem
from rich.style import Style

from ..errors import CancelledError
from .matcher import Matcher
from .summary import TestSummary


class TestContext:
    """Parallel gate, output writer and run options.

    ``running`` starts at one to account for the sequential root test.
    """

    __test__ = False

    def __init__(
        self,
        *,
        max_parallel: int = 1,
        writer: Optional[IO[str]] = None,
        verbose: bool = False,
        colored: bool = False,
        matcher: Optional[Matcher] = None,
        enabled_summary: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.max_parallel = max(1, max_parallel)
        self.running = 1
        self.num_waiting = 0
        self._lock = threading.Lock()
        self._start_parallel = threading.Semaphore(0)
        self._write_lock = threading.Lock()
        self.writer = writer if writer is not None else sys.stdout
        self.verbose = verbose
        self.colored = colored
        self.matcher = matcher
        self.summary = TestSummary() if enabled_summary else None
        self.cancel_event = cancel_event or threading.Event()

    def wait_parallel(self) -> None:
        with self._lock:
            if self.running < self.max_parallel:
                self.running += 1
                return
            self.num_waiting += 1
        self._start_parallel.acquire()

    def release(self) -> None:
        with self._lock:
            if self.num_waiting == 0:
                self.running -= 1
                return
            self.num_waiting -= 1
        # hand the slot over to one waiting test
        self._start_parallel.release()

    def printf(self, message: str, *args: object) -> None:
        text = message % args if args else message
        with self._write_lock:
            self.writer.write(text)
            self.writer.flush()

    def paint(self, text: str, style: Style) -> str:
        if not self.colored or not text:
            return text
        return style.render(text, color_system=ColorSystem.STANDARD)

    def match(self, name: str, depth: int) -> bool:
        if self.matcher is None:
            return True
        return self.matcher.match(name, depth)

    def sleep(self, seconds: float) -> None:
        """Sleep between retries, waking up early when the run is cancelled."""

        if self.cancel_event.wait(seconds):
            raise CancelledError("context canceled")

    def cancel(self) -> None:
        self.cancel_event.set()
