"""Output format and color configuration shared by both command line tools."""

from __future__ import annotations

import os
import sys
from enum import Enum
from typing import IO, Literal, Optional

LogFormat = Literal["json", "console", "plain"]


class OutputFormat(str, Enum):
    """Console output formats selectable via ``CONSOLE_OUTPUT_FORMAT``."""

    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"
COLOR_ENV_VAR_NAME = "TEST_EXECUTOR_COLOR"
CI_ENV_VARS = ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS")

_TRUE = {"1", "t", "true", "y", "yes", "on"}
_FALSE = {"0", "f", "false", "n", "no", "off"}


def get_output_format(cli_override: str | None = None) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).
    """
    if cli_override:
        try:
            return OutputFormat(cli_override.lower())
        except ValueError:
            pass

    env_value = os.environ.get(ENV_VAR_NAME)
    if env_value:
        try:
            return OutputFormat(env_value.lower())
        except ValueError:
            pass

    return OutputFormat.AUTO


def get_log_format(cli_override: str | None = None) -> LogFormat:
    """Map the output format onto a structlog renderer name.

    ``auto`` and ``rich`` select the colored console renderer.
    """
    if cli_override and cli_override.lower() in ("json", "console", "plain"):
        return cli_override.lower()  # type: ignore[return-value]

    output_format = get_output_format(cli_override)
    if output_format == OutputFormat.JSON:
        return "json"
    if output_format == OutputFormat.PLAIN:
        return "plain"
    return "console"


def is_ci() -> bool:
    return any(os.environ.get(name) for name in CI_ENV_VARS)


def parse_bool(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return None


def color_enabled(
    *,
    no_color: bool = False,
    configured: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> bool:
    """Decide whether the text report is colored.

    ``--no-color`` wins, then ``TEST_EXECUTOR_COLOR``, then the config file.
    Without an explicit choice colors follow terminal detection and are off
    in CI and with ``CONSOLE_OUTPUT_FORMAT=plain|json``.
    """
    if no_color:
        return False
    env_value = os.environ.get(COLOR_ENV_VAR_NAME)
    if env_value:
        parsed = parse_bool(env_value)
        if parsed is not None:
            return parsed
    if configured is not None:
        return configured

    output_format = get_output_format()
    if output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
        return False
    if output_format == OutputFormat.RICH:
        return True
    if is_ci():
        return False
    stream = stream if stream is not None else sys.stdout
    return hasattr(stream, "isatty") and stream.isatty()
