from __future__ import annotations

import io
import threading
import time

from test_executor.reporter.context import TestContext
from test_executor.reporter.matcher import Matcher
from test_executor.reporter.reporter import Reporter, run
from test_executor.schema import RetryPolicy


def _run(func, **options) -> tuple[Reporter, str]:
    writer = io.StringIO()
    root = run(func, TestContext(writer=writer, **options))
    return root, writer.getvalue()


def test_failure_propagates_to_parents() -> None:
    def root_func(r: Reporter) -> None:
        r.run("broken", lambda c: c.error("boom"))
        r.run("fine", lambda c: c.log("all good"))

    root, output = _run(root_func)

    assert root.failed
    broken, fine = root.children
    assert broken.failed and not fine.failed
    assert "--- FAIL: broken" in output
    assert "boom" in output
    assert "ok  \tfine" in output
    assert "all good" not in output


def test_verbose_prints_passed_logs() -> None:
    root, output = _run(lambda r: r.run("fine", lambda c: c.log("all good")), verbose=True)

    assert not root.failed
    assert "=== RUN   fine" in output
    assert "--- PASS: fine" in output
    assert "all good" in output


def test_fatal_stops_the_node() -> None:
    reached = []

    def child(c: Reporter) -> None:
        c.fatal("stop here: %d", 1)
        reached.append(True)

    root, output = _run(lambda r: r.run("fatal", child))

    assert root.failed
    assert reached == []
    assert "stop here: 1" in output


def test_skip_is_not_a_failure() -> None:
    root, _ = _run(lambda r: r.run("skipped", lambda c: c.skip("not now")))

    assert not root.failed
    assert root.children[0].skipped
    assert root.children[0].logs.skip_log() == "not now"


def test_unexpected_exception_fails_node() -> None:
    def child(c: Reporter) -> None:
        raise ValueError("unexpected")

    root, output = _run(lambda r: r.run("raises", child))

    assert root.failed
    assert "unexpected" in output


def test_no_failure_propagation() -> None:
    def child(c: Reporter) -> None:
        c.no_failure_propagation = True
        c.error("ignored")

    root, _ = _run(lambda r: r.run("quiet", child))

    assert root.children[0].failed
    assert not root.failed


def _sleeper(c: Reporter) -> None:
    c.parallel()
    time.sleep(0.3)


def _group(r: Reporter) -> None:
    r.run("group", lambda g: [g.run(f"p{i}", _sleeper) for i in range(3)])


def test_parallel_children_run_concurrently() -> None:
    start = time.perf_counter()
    root, _ = _run(_group, max_parallel=3)
    elapsed = time.perf_counter() - start

    assert not root.failed
    assert len(root.children[0].children) == 3
    assert elapsed < 0.8


def test_parallel_gate_limits_concurrency() -> None:
    start = time.perf_counter()
    _run(_group, max_parallel=1)

    assert time.perf_counter() - start >= 0.85


def test_parallel_gate_never_exceeds_limit() -> None:
    lock = threading.Lock()
    active = [0]
    peak = [0]

    def child(c: Reporter) -> None:
        c.parallel()
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        time.sleep(0.05)
        with lock:
            active[0] -= 1

    _run(lambda r: r.run("group", lambda g: [g.run(f"p{i}", child) for i in range(6)]), max_parallel=2)

    assert peak[0] == 2


def test_retry_until_success() -> None:
    attempts = []
    policy = RetryPolicy.model_validate({"constant": {"interval": "10ms", "maxRetries": 3}})

    def flaky(c: Reporter) -> None:
        attempts.append(c.short_name)
        if len(attempts) < 3:
            c.fatal("not yet")

    root, _ = _run(lambda r: r.run_with_retry("flaky", flaky, policy))

    assert attempts == ["attempt 1", "attempt 2", "attempt 3"]
    assert not root.failed
    assert not root.children[0].failed


def test_retry_limit_exceeded() -> None:
    policy = RetryPolicy.model_validate({"constant": {"interval": "10ms", "maxRetries": 2}})

    root, output = _run(lambda r: r.run_with_retry("always", lambda c: c.fatal("nope"), policy))

    node = root.children[0]
    assert root.failed and node.failed
    assert len(node.children) == 3
    assert "retry limit exceeded" in node.logs.error_logs()
    assert "retry after 10ms" in node.logs.info_logs()


def test_matcher_filters_by_depth() -> None:
    matcher = Matcher.compile("keep/inner")
    seen = []

    def root_func(r: Reporter) -> None:
        for name in ("keep", "drop"):
            r.run(name, lambda c, name=name: [c.run(inner, lambda _, inner=inner: seen.append(f"{name}/{inner}")) for inner in ("inner", "other")])

    _run(root_func, matcher=matcher)

    assert seen == ["keep/inner"]
