"""Scenario execution engine.

The runner maps the loaded documents onto the reporter tree: one node per
scenario file, one parallel node per scenario and one node per step.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import IO, Any, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from .assertion.core import Assertion
from .context import Context, StepResult, Steps
from .errors import MultiPathError, with_path, wrap
from .loader import discover, load_scenarios, validation_error
from .ordered_map import OrderedMap
from .protocol import registry
from .reporter.context import TestContext
from .reporter.matcher import Matcher
from .reporter.reporter import Reporter, run as run_reporter
from .schema import Config, Scenario, Step

LOGGER = structlog.get_logger("test-executor")

PREVIOUS_STEP_FAILED = "skipped because the previous step failed"


class ScenarioRunner:
    """Runs every scenario found under ``paths``."""

    def __init__(
        self,
        *,
        paths: Iterable[Union[str, Path]] = (),
        colored: bool = False,
    ) -> None:
        self.scenario_files = discover(paths)
        self.colored = colored

    @classmethod
    def from_config(cls, config: Config, paths: Iterable[Union[str, Path]] = (), *, colored: bool = False) -> "ScenarioRunner":
        """Command line paths replace the scenarios listed in the config file."""

        paths = list(paths)
        if not paths:
            paths = [config.resolve(p) for p in config.scenarios]
        return cls(paths=paths, colored=colored)

    def run(self, ctx: Context) -> None:
        ctx = ctx.with_colored(self.colored)
        for path in self.scenario_files:
            ctx.run(str(path), lambda ctx, path=path: run_file(ctx, path))

    def execute(
        self,
        *,
        verbose: bool = False,
        run: Optional[str] = None,
        parallel: int = 1,
        writer: Optional[IO[str]] = None,
        enabled_summary: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> Reporter:
        """Run all scenarios under a new root reporter and return it."""

        context = TestContext(
            max_parallel=parallel,
            writer=writer,
            verbose=verbose,
            colored=self.colored,
            matcher=Matcher.compile(run or ""),
            enabled_summary=enabled_summary,
            cancel_event=cancel_event,
        )
        LOGGER.debug("run_started", files=len(self.scenario_files), parallel=parallel)
        root = run_reporter(lambda reporter: self.run(Context(reporter)), context)
        LOGGER.debug("run_finished", failed=root.failed, duration=root.duration)
        return root


def run_file(ctx: Context, path: Path) -> None:
    try:
        scenarios = load_scenarios(path)
    except Exception as exc:  # noqa: BLE001
        ctx.reporter.fatal("failed to load scenarios: %s", exc)
    for scenario in scenarios:
        ctx.run(scenario.title, lambda ctx, scenario=scenario: _run_parallel_scenario(ctx, scenario))


def _run_parallel_scenario(ctx: Context, scenario: Scenario) -> None:
    ctx.reporter.parallel()
    run_scenario(ctx, scenario)


def run_scenario(ctx: Context, scenario: Scenario) -> Context:
    """Run the steps of ``scenario`` in order and return the scenario context."""

    if scenario.plugins:
        LOGGER.debug("plugins_ignored", scenario=scenario.title, plugins=list(scenario.plugins))
    if scenario.vars is not None:
        try:
            ctx = ctx.with_vars(ctx.execute_template(scenario.vars))
        except Exception as exc:  # noqa: BLE001
            ctx.reporter.fatal("invalid vars: %s", exc)

    steps = Steps()
    scenario_ctx = ctx.with_steps(steps)
    failed = False
    for idx, step in enumerate(scenario.steps):

        def step_func(ctx: Context, step: Step = step, idx: int = idx) -> None:
            nonlocal scenario_ctx
            if failed:
                ctx.reporter.skip(PREVIOUS_STEP_FAILED)
            if ctx.cancel_event.is_set():
                ctx.reporter.fatal("context canceled")
            ctx = run_step(ctx, scenario, step, idx)
            if step.bind.vars is not None:
                try:
                    bound = ctx.execute_template(step.bind.vars)
                except Exception as exc:  # noqa: BLE001
                    ctx.reporter.fatal(with_path(wrap(exc, "invalid bind"), f"steps[{idx}].bind.vars"))
                scenario_ctx = scenario_ctx.with_vars(bound)

        if step.retry is not None:
            ok = scenario_ctx.run_with_retry(step.title, step_func, step.retry)
        else:
            ok = scenario_ctx.run(step.title, step_func)
        if failed:
            result = "skipped"
        else:
            result = "passed" if ok else "failed"
            failed = not ok
        steps.add(step.id, StepResult(result=result))
    return scenario_ctx


def run_step(ctx: Context, scenario: Scenario, step: Step, idx: int) -> Context:
    if step.vars is not None:
        try:
            ctx = ctx.with_vars(ctx.execute_template(step.vars))
        except Exception as exc:  # noqa: BLE001
            ctx.reporter.fatal(with_path(wrap(exc, "invalid vars"), f"steps[{idx}].vars"))

    if step.include is not None:
        return _include(ctx, scenario, step)

    if step.ref is not None:
        try:
            ref = ctx.execute_template(step.ref)
        except Exception as exc:  # noqa: BLE001
            ctx.reporter.fatal(with_path(wrap(exc, f'failed to reference "{step.ref}" as step'), f"steps[{idx}].ref"))
        referenced = _as_step(ctx, ref, step, idx)
        start = time.perf_counter()
        ctx = run_step(ctx, scenario, referenced, idx)
        ctx.reporter.log("Run %s: elapsed time %f sec", step.ref, time.perf_counter() - start)
        return ctx

    return invoke_and_assert(ctx, step, idx)


def _include(ctx: Context, scenario: Scenario, step: Step) -> Context:
    base_dir = Path(scenario.filepath).parent
    include = base_dir / step.include
    try:
        scenarios = load_scenarios(include)
    except Exception as exc:  # noqa: BLE001
        ctx.reporter.fatal('failed to include "%s" as step: %s', step.include, exc)
    if len(scenarios) != 1:
        ctx.reporter.fatal('failed to include "%s" as step: must be a scenario', step.include)

    included = ctx

    def include_func(ctx: Context) -> None:
        nonlocal included
        included = run_scenario(ctx, scenarios[0])

    ctx.run(step.include, include_func)
    if ctx.reporter.failed:
        ctx.reporter.fail_now()
    # vars bound by the included scenario stay visible to this step's bind
    return included.with_reporter(ctx.reporter)


def _as_step(ctx: Context, ref: Any, step: Step, idx: int) -> Step:
    if isinstance(ref, Step):
        return ref
    if not isinstance(ref, (dict, OrderedMap)):
        ctx.reporter.fatal('.steps[%d].ref: failed to reference "%s" as step: not a step definition', idx, step.ref)
    try:
        referenced = Step.model_validate(ref)
    except ValidationError as exc:
        message = f'failed to reference "{step.ref}" as step'
        ctx.reporter.fatal(with_path(wrap(validation_error(exc), message), f"steps[{idx}].ref"))
    if referenced.include is not None or referenced.ref is not None:
        ctx.reporter.fatal(
            '.steps[%d].ref: failed to reference "%s" as step: nested references are not supported', idx, step.ref
        )
    return referenced


def invoke_and_assert(ctx: Context, step: Step, idx: int) -> Context:
    """Send the request of ``step`` and check the response against its expectation."""

    if not step.protocol:
        return ctx
    protocol = registry.get(step.protocol)
    if protocol is None:
        ctx.reporter.fatal('.steps[%d].protocol: protocol "%s" not found', idx, step.protocol)
    try:
        invoker = protocol.unmarshal_request(step.request)
    except ValidationError as exc:
        ctx.reporter.fatal(with_path(validation_error(exc), f"steps[{idx}].request"))
    try:
        builder = protocol.unmarshal_expect(step.expect)
    except ValidationError as exc:
        ctx.reporter.fatal(with_path(validation_error(exc), f"steps[{idx}].expect"))

    start = time.perf_counter()
    try:
        new_ctx, response = invoker.invoke(ctx)
    except Exception as exc:  # noqa: BLE001
        ctx.reporter.log("elapsed time: %f sec", time.perf_counter() - start)
        ctx.reporter.fatal(with_path(exc, f"steps[{idx}].request"))
    ctx.reporter.log("elapsed time: %f sec", time.perf_counter() - start)

    try:
        assertion: Assertion = builder.build(new_ctx)
    except Exception as exc:  # noqa: BLE001
        ctx.reporter.fatal(with_path(exc, f"steps[{idx}].expect"))
    try:
        assertion.assert_value(response)
    except Exception as exc:  # noqa: BLE001
        err = with_path(exc, f"steps[{idx}].expect")
        if isinstance(err, MultiPathError):
            for item in err.errors:
                ctx.reporter.error(item)
        else:
            ctx.reporter.error(err)
        ctx.reporter.fail_now()
    return new_ctx
