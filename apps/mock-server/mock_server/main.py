"""CLI entrypoint for the HTTP/gRPC mock server."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import typer

from test_executor.errors import ScenarioError
from test_executor.logging_utils import configure_logging
from test_executor.output_config import get_log_format
from test_executor.version import __version__

from .config import load_config
from .iterator import MocksRemainError
from .server import MockServer

app = typer.Typer(help="Serve queued HTTP and gRPC mocks in order.")

DEFAULT_WAIT_TIMEOUT = 10.0


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def serve(
    config_file: Path = typer.Option(..., "--config", "-c", help="Mock server config file."),
    wait_timeout: float = typer.Option(DEFAULT_WAIT_TIMEOUT, "--wait-timeout", help="Seconds to wait for readiness."),
    log_level: str = typer.Option("info", "--log-level", help="Diagnostic log level."),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="Diagnostic log format: console, plain or json."),
) -> None:
    """Start the servers and consume mocks until interrupted."""

    configure_logging(log_level, get_log_format(log_format), logger_name="mock-server")
    try:
        server = MockServer(load_config(config_file))
        server.start()
    except (ScenarioError, OSError) as exc:
        _fail(f"failed to start mock server: {exc}")

    try:
        server.wait(wait_timeout)
    except ScenarioError as exc:
        try:
            server.stop()
        except MocksRemainError:
            pass
        _fail(f"mock server is not ready: {exc}")
    for name, addr in server.addrs().items():
        typer.echo(f"{name}: {addr}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.secho("stopping", fg=typer.colors.YELLOW, err=True)

    try:
        server.stop()
    except MocksRemainError as exc:
        _fail(str(exc))
    except ScenarioError as exc:
        _fail(f"failed to stop mock server: {exc}")


@app.command()
def version() -> None:
    """Print the version."""

    typer.echo(f"mock-server version {__version__}")


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
