"""Evaluation context threaded through a scenario run.

A :class:`Context` is never mutated: every ``with_*`` method returns a copy
so a step can extend the variables or record a response without affecting
its siblings.
"""

from __future__ import annotations

import copy
import os
import threading
from typing import Any, Callable, Optional

from pydantic import BaseModel

from .assertion.functions import AssertFunctions
from .ordered_map import OrderedMap
from .reporter.reporter import Reporter, RetryPolicy
from .template.lookup import MISSING, extract_key
from .template.template import execute

BUILTIN_NAMES = ("ctx", "plugins", "vars", "steps", "request", "response", "env", "assert")


class Vars:
    """Variable scopes, the innermost last."""

    def __init__(self, scopes: tuple[Any, ...] = ()) -> None:
        self._scopes = scopes

    def append(self, scope: Any) -> "Vars":
        if scope is None:
            return self
        return Vars((*self._scopes, scope))

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        for scope in reversed(self._scopes):
            found = extract_key(scope, key)
            if found is not MISSING:
                return found, True
        return None, False

    def __len__(self) -> int:
        return len(self._scopes)


class Env:
    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if not isinstance(key, str) or key not in os.environ:
            return None, False
        return os.environ[key], True


class StepResult(BaseModel):
    result: str = ""


class Steps:
    """Results of the steps that declared an ``id``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, StepResult] = {}

    def add(self, step_id: Optional[str], result: StepResult) -> None:
        if not step_id:
            return
        with self._lock:
            self._results[step_id] = result

    def get(self, step_id: str) -> Optional[StepResult]:
        with self._lock:
            return self._results.get(step_id)

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        result = self.get(key) if isinstance(key, str) else None
        return result, result is not None


ENV = Env()


class Context:
    def __init__(self, reporter: Optional[Reporter] = None) -> None:
        self.reporter = reporter
        self.vars = Vars()
        self.plugins: Optional[OrderedMap] = None
        self.steps: Optional[Steps] = None
        self.request: Any = None
        self.response: Any = None
        self.colored = False

    def _replace(self, **changes: Any) -> "Context":
        clone = copy.copy(self)
        clone.__dict__.update(changes)
        return clone

    def with_reporter(self, reporter: Reporter) -> "Context":
        return self._replace(reporter=reporter)

    def with_vars(self, scope: Any) -> "Context":
        if scope is None:
            return self
        return self._replace(vars=self.vars.append(scope))

    def with_plugins(self, plugins: Optional[OrderedMap]) -> "Context":
        if plugins is None:
            return self
        return self._replace(plugins=plugins)

    def with_steps(self, steps: Steps) -> "Context":
        return self._replace(steps=steps)

    def with_request(self, request: Any) -> "Context":
        if request is None:
            return self
        return self._replace(request=request)

    def with_response(self, response: Any) -> "Context":
        if response is None:
            return self
        return self._replace(response=response)

    def with_colored(self, colored: bool) -> "Context":
        return self._replace(colored=colored)

    @property
    def cancel_event(self) -> threading.Event:
        if self.reporter is None:
            return threading.Event()
        return self.reporter.context.cancel_event

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if key == "ctx":
            return self, True
        if key == "vars":
            return self.vars, True
        if key == "env":
            return ENV, True
        if key == "assert":
            return AssertFunctions(self), True
        value = {
            "plugins": self.plugins,
            "steps": self.steps,
            "request": self.request,
            "response": self.response,
        }.get(key, MISSING) if isinstance(key, str) else MISSING
        if value is not MISSING:
            return (value, True) if value is not None else (None, False)
        # plain identifiers fall back to the variable scopes
        return self.vars.extract_by_key(key)

    def execute_template(self, value: Any) -> Any:
        return execute(value, self)

    def run(self, name: str, func: Callable[["Context"], Any]) -> bool:
        return self.reporter.run(name, lambda reporter: func(self.with_reporter(reporter)))

    def run_with_retry(self, name: str, func: Callable[["Context"], Any], policy: Optional[RetryPolicy]) -> bool:
        return self.reporter.run_with_retry(name, lambda reporter: func(self.with_reporter(reporter)), policy)
