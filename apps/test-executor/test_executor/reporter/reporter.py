"""Hierarchical test reporter.

Every node runs its test function on its own thread. :meth:`Reporter.run`
returns once the child function returns or calls :meth:`Reporter.parallel`;
parallel children resume after their parent's foreground phase and are
bounded by the shared :class:`~.context.TestContext` gate.
"""

from __future__ import annotations

import threading
import traceback
from typing import Any, Callable, Optional, Protocol

import structlog
from tenacity import RetryCallState, Retrying, retry_if_result

from ..duration import format_duration
from .context import TestContext
from .logs import LogRecorder
from .measure import DurationMeasurer
from .styles import FAIL_STYLE, PASS_STYLE, SKIP_STYLE

LOGGER = structlog.get_logger("test-executor")

TestFunc = Callable[["Reporter"], Any]

ABNORMAL_EXIT = "test function exited without completing"


class RetryPolicy(Protocol):
    def build(self) -> dict[str, Any]:
        """Return the ``stop`` and ``wait`` strategies of a :class:`tenacity.Retrying`."""


class _Exit(BaseException):
    """Unwinds the thread of a node after fail_now or skip_now."""


def rewrite(name: str) -> str:
    chars = []
    for ch in name:
        if ch.isspace():
            chars.append("_")
        elif not ch.isprintable():
            chars.append(repr(ch)[1:-1])
        else:
            chars.append(ch)
    return "".join(chars)


class Reporter:
    """One node of the test tree."""

    def __init__(self, context: TestContext, parent: Optional["Reporter"] = None, name: str = "") -> None:
        self.context = context
        self.parent = parent
        self.short_name = name
        if parent is None:
            self.name = ""
            self.depth = 0
            self.logs = LogRecorder()
            self.duration_measurer = DurationMeasurer()
        else:
            self.name = f"{parent.name}/{rewrite(name)}" if parent.name else rewrite(name)
            self.depth = parent.depth + 1
            self.logs = parent.logs.spawn()
            self.duration_measurer = parent.duration_measurer.spawn()
        self.children: list[Reporter] = []
        self.retry_policy: Optional[RetryPolicy] = None
        self.retryable = False
        self.no_failure_propagation = False
        self._lock = threading.Lock()
        self._failed = False
        self._skipped = False
        self._parallel = False
        self._barrier = threading.Event()
        self._released = threading.Event()
        self._finished = threading.Event()

    def __repr__(self) -> str:
        return f"Reporter(name={self.name!r}, failed={self._failed}, skipped={self._skipped})"

    @property
    def is_root(self) -> bool:
        return self.depth == 0

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def skipped(self) -> bool:
        return self._skipped

    @property
    def duration(self) -> float:
        return self.duration_measurer.duration

    def fail(self) -> None:
        if self.parent is not None and not self.retryable and not self.no_failure_propagation:
            self.parent.fail()
        self._failed = True

    def fail_now(self) -> None:
        self.fail()
        raise _Exit()

    def log(self, message: object, *args: object) -> None:
        self.logs.info(_format(message, args))

    def error(self, message: object, *args: object) -> None:
        self.fail()
        self.logs.error(_format(message, args))

    def fatal(self, message: object, *args: object) -> None:
        self.error(message, *args)
        raise _Exit()

    def skip(self, message: object, *args: object) -> None:
        self.logs.skip(_format(message, args))
        self.skip_now()

    def skip_now(self) -> None:
        self._skipped = True
        raise _Exit()

    def parallel(self) -> None:
        """Pause until the parent's foreground phase ends and a slot is free."""

        if self.retryable:
            # an attempt takes the slot of the node that retries it
            self.parent.parallel()
            return
        with self._lock:
            if self._parallel:
                if self.retry_policy is not None:
                    return
                raise RuntimeError("reporter: Reporter.Parallel called multiple times")
            self._parallel = True
        self.duration_measurer.stop()
        try:
            if self.context.verbose:
                self.context.printf("=== PAUSE %s\n", self.name)
            self._released.set()
            self.parent._barrier.wait()
            self.context.wait_parallel()
            if self.context.verbose:
                self.context.printf("=== CONT  %s\n", self.name)
        finally:
            self.duration_measurer.start()

    def run(self, name: str, func: TestFunc) -> bool:
        return self.run_with_retry(name, func, None)

    def run_with_retry(self, name: str, func: TestFunc, policy: Optional[RetryPolicy]) -> bool:
        """Run ``func`` as a child node, retrying it according to ``policy``."""

        if not self.context.match(rewrite(name), self.depth + 1):
            return True
        child = Reporter(self.context, self, name)
        child.retry_policy = policy
        self._start(child, func)
        with self._lock:
            self.children.append(child)
        if self.is_root:
            print_report(child)
            if self.context.summary is not None:
                self.context.summary.append(name, child)
        return not child.failed

    def _start(self, child: "Reporter", func: TestFunc) -> None:
        if self.context.verbose:
            self.context.printf("=== RUN   %s\n", child.name)
        thread = threading.Thread(target=child._execute, args=(func,), name=child.name or "root", daemon=True)
        thread.start()
        child._released.wait()

    def _execute(self, func: TestFunc) -> None:
        self.duration_measurer.start()
        try:
            if self.retry_policy is None:
                self._call(func)
            else:
                self._call_with_retry(func)
        except _Exit:
            pass
        except Exception as exc:  # noqa: BLE001
            if not self._failed and not self._skipped:
                self.error(str(exc) or repr(exc))
                self.error(traceback.format_exc())
        finally:
            self._finish()

    def _call(self, func: TestFunc) -> None:
        try:
            func(self)
        except _Exit:
            if not self._failed and not self._skipped:
                self.error(ABNORMAL_EXIT)
        except Exception as exc:  # noqa: BLE001
            if not self._failed and not self._skipped:
                self.error(str(exc) or repr(exc))
                self.error(traceback.format_exc())

    def _call_with_retry(self, func: TestFunc) -> None:
        try:
            strategies = self.retry_policy.build()
        except Exception as exc:  # noqa: BLE001
            self.fatal("invalid retry policy: %s", exc)
        attempts: list[Reporter] = []

        def attempt() -> Reporter:
            child = Reporter(self.context, self, f"attempt {len(attempts) + 1}")
            child.retryable = True
            attempts.append(child)
            with self._lock:
                self.children.append(child)
            self._start(child, func)
            child._finished.wait()
            return child

        def notify(state: RetryCallState) -> None:
            delay = state.next_action.sleep if state.next_action is not None else 0
            self.log("retry after %s", format_duration(delay))
            LOGGER.debug("step_retry_scheduled", name=self.name, attempt=state.attempt_number, delay=delay)

        retrying = Retrying(
            sleep=self.context.sleep,
            retry=retry_if_result(lambda node: node.failed and not node.skipped),
            before_sleep=notify,
            retry_error_callback=lambda state: state.outcome.result(),
            **strategies,
        )
        last = retrying(attempt)
        if last.failed:
            if len(attempts) > 1:
                self.error("retry limit exceeded")
            self.fail_now()
        for earlier in attempts[:-1]:
            earlier.no_failure_propagation = True
        if last.skipped:
            self.skip_now()

    def _finish(self) -> None:
        self.duration_measurer.stop()
        subtests: list[Reporter] = []
        if self.retry_policy is None:
            with self._lock:
                subtests = [child for child in self.children if child._parallel]
        if subtests:
            self.context.release()
            self._barrier.set()
            for child in subtests:
                child._finished.wait()
            if not self._parallel:
                self.context.wait_parallel()
        elif self._parallel:
            self.context.release()
        self._released.set()
        self._finished.set()


def _format(message: object, args: tuple[object, ...]) -> str:
    text = str(message)
    if args:
        return text % args
    return text


def no_failure_propagation(node: Reporter) -> None:
    node.no_failure_propagation = True


def run(func: TestFunc, context: Optional[TestContext] = None) -> Reporter:
    """Run ``func`` as the root of a new tree and return the finished root."""

    root = Reporter(context or TestContext())
    thread = threading.Thread(target=root._execute, args=(func,), name="root", daemon=True)
    thread.start()
    root._finished.wait()
    if (root.failed and not root.no_failure_propagation) or root.context.verbose:
        style = _style(root)
        for record in root.logs.all():
            root.context.printf("%s\n", root.context.paint(record, style))
    if root.context.summary is not None:
        root.context.printf(root.context.summary.render(root.context.paint))
    return root


def _style(node: Reporter):
    if node.failed:
        return FAIL_STYLE
    if node.skipped:
        return SKIP_STYLE
    return PASS_STYLE


def _status(node: Reporter) -> str:
    if node.failed:
        return "FAIL"
    if node.skipped:
        return "SKIP"
    return "PASS"


def print_report(node: Reporter) -> None:
    context = node.context
    context.printf("%s\n", "\n".join(collect_output(node)))
    if node.failed:
        context.printf("%s\n", context.paint("FAIL", FAIL_STYLE))


def collect_output(node: Reporter) -> list[str]:
    context = node.context
    results: list[str] = []
    if (node.failed and not node.no_failure_propagation) or context.verbose:
        prefix = "    " * (node.depth - 1)
        header = "%s--- %s: %s (%.2fs)" % (prefix, _status(node), node.name, node.duration)
        results.append(context.paint(header, _style(node)))
        for record in node.logs.all():
            results.append(pad(record, prefix + "    "))
    with node._lock:
        children = list(node.children)
    for child in children:
        results.extend(collect_output(child))
    if node.depth == 1:
        if node.failed:
            results.append(context.paint("FAIL\nFAIL\t%s\t%.3fs" % (node.name, node.duration), FAIL_STYLE))
        else:
            if context.verbose:
                results.append(context.paint("PASS", PASS_STYLE))
            results.append(context.paint("ok  \t%s\t%.3fs" % (node.name, node.duration), PASS_STYLE))
    return results


def pad(text: str, padding: str) -> str:
    lines = text.strip("\n").split("\n")
    return "\n".join(f"    {padding}{line}" for line in lines)
