"""Selects which tests run from a ``-run`` style pattern."""

from __future__ import annotations

import re
from typing import Optional


class Matcher:
    """Matches one ``/``-separated regular expression per tree depth."""

    def __init__(self, patterns: list[re.Pattern[str]]) -> None:
        self.patterns = patterns

    @classmethod
    def compile(cls, run: str) -> Optional["Matcher"]:
        if not run:
            return None
        patterns = []
        for expr in run.split("/"):
            try:
                patterns.append(re.compile(expr))
            except re.error as exc:
                raise ValueError(f"invalid run pattern {expr!r}: {exc}") from exc
        return cls(patterns)

    def match(self, name: str, depth: int) -> bool:
        if depth <= 0 or depth > len(self.patterns):
            return True
        return self.patterns[depth - 1].search(name) is not None
