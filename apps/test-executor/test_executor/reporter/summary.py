"""Totals printed after all scenario files have run."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable

from rich.style import Style

from .styles import FAIL_STYLE, PASS_STYLE, SKIP_STYLE

if TYPE_CHECKING:
    from .reporter import Reporter


class TestSummary:
    __test__ = False

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.passed = 0
        self.failed: list[str] = []
        self.skipped = 0

    def append(self, file: str, node: "Reporter") -> None:
        with self._lock:
            if node.failed:
                self.failed.append(file)
            elif node.skipped:
                self.skipped += 1
            else:
                self.passed += 1

    @property
    def total(self) -> int:
        return self.passed + len(self.failed) + self.skipped

    def render(self, paint: Callable[[str, Style], str]) -> str:
        with self._lock:
            line = "%d tests run: %s, %s, %s" % (
                self.total,
                paint(f"{self.passed} passed", PASS_STYLE),
                paint(f"{len(self.failed)} failed", FAIL_STYLE),
                paint(f"{self.skipped} skipped", SKIP_STYLE),
            )
            failed_files = ""
            if self.failed:
                failed_files = "Failed tests:\n" + "".join(f"\t- {file}\n" for file in self.failed) + "\n"
            return f"\n{line}\n\n{paint(failed_files, FAIL_STYLE)}"
