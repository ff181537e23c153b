"""CLI entrypoint for running YAML test scenarios."""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .errors import ScenarioError
from .loader import DEFAULT_CONFIG_FILE_NAME, discover, load_config, load_scenarios, write_default_config
from .logging_utils import configure_logging
from .output_config import color_enabled, get_log_format
from .protocol.grpc_protocol import close_channels
from .reporter.report import generate_test_report
from .runner import ScenarioRunner
from .schema import Config
from .version import __version__

app = typer.Typer(help="Run scenario based integration tests described in YAML.")
config_app = typer.Typer(help="Manage the test-executor.yaml configuration file.")
app.add_typer(config_app, name="config")

EXIT_INTERRUPTED = 130


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_config(path: Optional[Path]) -> Optional[Config]:
    """Load ``path`` or, when omitted, the default config file if it exists."""

    if path is None:
        default = Path(DEFAULT_CONFIG_FILE_NAME)
        if not default.exists():
            return None
        path = default
    try:
        return load_config(path)
    except (ScenarioError, ValidationError) as exc:
        _fail(f"failed to load config: {exc}")
    return None


def _report_path(option: Optional[Path], config: Optional[Config], configured: str) -> Optional[Path]:
    if option is not None:
        return option
    if config is not None and configured:
        return config.resolve(configured)
    return None


@app.command()
def run(
    paths: list[Path] = typer.Argument(None, help="Scenario files or directories."),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Config file path (default: ./{DEFAULT_CONFIG_FILE_NAME} when present).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print logs of passed tests too."),
    run_pattern: Optional[str] = typer.Option(
        None,
        "--run",
        help="Only run tests matching the /-separated regular expressions.",
    ),
    parallel: int = typer.Option(1, "--parallel", min=1, help="Maximum number of scenarios running at once."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output."),
    json_report: Optional[Path] = typer.Option(None, "--json-report", help="Write a JSON report to this file."),
    junit_report: Optional[Path] = typer.Option(None, "--junit-report", help="Write a JUnit XML report to this file."),
    log_level: str = typer.Option("warning", "--log-level", help="Diagnostic log level."),
    log_format: Optional[str] = typer.Option(
        None,
        "--log-format",
        help="Diagnostic log format: console, plain or json (default: from CONSOLE_OUTPUT_FORMAT).",
    ),
) -> None:
    """Run the scenarios and print a test report."""

    configure_logging(log_level, get_log_format(log_format))
    config = _load_config(config_file)
    if not paths and config is None:
        _fail("no scenario files given")

    colored = color_enabled(no_color=no_color, configured=config.output.colored if config else None)
    try:
        if config is not None:
            runner = ScenarioRunner.from_config(config, paths or [], colored=colored)
        else:
            runner = ScenarioRunner(paths=paths, colored=colored)
    except ScenarioError as exc:
        _fail(str(exc))

    cancel_event = threading.Event()
    try:
        root = runner.execute(
            verbose=verbose or (config.output.verbose if config else False),
            run=run_pattern,
            parallel=parallel,
            writer=sys.stdout,
            enabled_summary=True,
            cancel_event=cancel_event,
        )
    except ValueError as exc:
        _fail(str(exc))
    except KeyboardInterrupt:
        cancel_event.set()
        typer.secho("interrupted", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    finally:
        close_channels()

    report = generate_test_report(root)
    json_path = _report_path(json_report, config, config.output.report.json_.filename if config else "")
    if json_path is not None:
        report.write_json(json_path)
    junit_path = _report_path(junit_report, config, config.output.report.junit.filename if config else "")
    if junit_path is not None:
        report.write_junit(junit_path)

    if root.failed:
        raise typer.Exit(code=1)


@app.command("list")
def list_scenarios(
    paths: list[Path] = typer.Argument(None, help="Scenario files or directories."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path."),
    log_level: str = typer.Option("warning", "--log-level", help="Diagnostic log level."),
) -> None:
    """List the files, scenarios and steps that would run."""

    configure_logging(log_level, get_log_format(None))
    config = _load_config(config_file)
    if not paths and config is not None:
        paths = [config.resolve(p) for p in config.scenarios]
    if not paths:
        _fail("no scenario files given")
    try:
        files = discover(paths)
        for file in files:
            typer.echo(str(file))
            for scenario in load_scenarios(file):
                typer.echo(f"    {scenario.title}")
                for step in scenario.steps:
                    typer.echo(f"        {step.title}")
    except ScenarioError as exc:
        _fail(str(exc))


@config_app.command("init")
def config_init(
    path: Path = typer.Option(Path(DEFAULT_CONFIG_FILE_NAME), "--file", "-f", help="Destination file."),
) -> None:
    """Create a default configuration file."""

    try:
        write_default_config(path)
    except ScenarioError as exc:
        _fail(str(exc))
    typer.secho(f"Config created -> {path}", fg=typer.colors.GREEN)


@config_app.command("validate")
def config_validate(
    config_file: Path = typer.Option(Path(DEFAULT_CONFIG_FILE_NAME), "--config", "-c", help="Config file path."),
) -> None:
    """Load and validate a configuration file."""

    if not config_file.exists():
        _fail(f"{config_file}: no such file or directory")
    _load_config(config_file)
    typer.secho(f"{config_file} is valid", fg=typer.colors.GREEN)


@app.command()
def version() -> None:
    """Print the version."""

    typer.echo(f"test-executor version {__version__}")


def run_cli() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
