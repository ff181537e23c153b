"""Scenario and config file loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

import structlog
import yaml
from pydantic import ValidationError

from . import yamlutil
from .errors import LoadError, MultiPathError, combine
from .schema import Config, Scenario

LOGGER = structlog.get_logger("test-executor")

DEFAULT_CONFIG_FILE_NAME = "test-executor.yaml"
CONFIG_VERSION = "config/v1"
SCENARIO_SUFFIXES = {".yaml", ".yml"}

DEFAULT_CONFIG = """\
schemaVersion: config/v1

# files or directories of the scenarios to run
scenarios: []

# plugins are accepted for compatibility but never loaded
pluginDirectory: ./gen
plugins: {}

output:
  verbose: false
  # colored: false
  # report:
  #   json:
  #     filename: ./report.json
  #   junit:
  #     filename: ./junit.xml
"""


def format_loc(loc: Iterable[Union[str, int]]) -> str:
    path = ""
    for item in loc:
        if isinstance(item, int):
            path += f"[{item}]"
        else:
            path += f".{item}"
    return path


def validation_error(exc: ValidationError) -> LoadError | MultiPathError:
    """Convert a pydantic error into path-annotated load errors."""

    errors = []
    for detail in exc.errors():
        loc = list(detail["loc"])
        message = detail["msg"].removeprefix("Value error, ")
        if detail["type"] == "extra_forbidden" and loc:
            message = f'unknown field "{loc.pop()}"'
        errors.append(LoadError(message, format_loc(loc)))
    return combine(errors)


def load_scenarios(path: Path) -> list[Scenario]:
    """Load every YAML document of ``path`` as a scenario."""

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LoadError(f"failed to read {path}: {exc.strerror or exc}") from exc
    try:
        documents = [doc for doc in yamlutil.load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise LoadError(f"{path}: failed to parse YAML: {exc}") from exc

    scenarios = []
    for document in documents:
        try:
            scenario = Scenario.model_validate(document)
        except ValidationError as exc:
            err = validation_error(exc)
            raise LoadError(f"{path}: failed to decode YAML: {err}") from exc
        scenario._filepath = str(path)
        scenarios.append(scenario)
    LOGGER.debug("scenario_loaded", path=str(path), scenarios=len(scenarios))
    return scenarios


def discover(paths: Iterable[Union[str, Path]]) -> list[Path]:
    """Expand files and directories into a sorted list of scenario files."""

    files: list[Path] = []
    seen: set[Path] = set()
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise LoadError(f"{path}: no such file or directory")
        if path.is_dir():
            candidates = sorted(p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in SCENARIO_SUFFIXES)
        else:
            candidates = [path]
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                files.append(candidate)
    return files


def load_config(path: Path) -> Config:
    """Load a ``config/v1`` file and check that the listed scenarios exist."""

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LoadError(f"failed to read {path}: {exc.strerror or exc}") from exc
    try:
        document = next(iter(yamlutil.load_all(text)), None)
    except yaml.YAMLError as exc:
        raise LoadError(f"failed to parse {path}: {exc}") from exc

    if not hasattr(document, "get") or document.get("schemaVersion") is None:
        raise LoadError("schemaVersion not found")
    version = document.get("schemaVersion")
    if version != CONFIG_VERSION:
        raise LoadError(f'unknown version "{version}"', ".schemaVersion")

    try:
        config = Config.model_validate(document)
    except ValidationError as exc:
        raise validation_error(exc) from exc
    config._root = path.resolve().parent

    errors = []
    for i, scenario in enumerate(config.scenarios):
        if not config.resolve(scenario).exists():
            errors.append(LoadError(f"{scenario}: no such file or directory", f".scenarios[{i}]"))
    err = combine(errors)
    if err is not None:
        raise err
    return config


def write_default_config(path: Path) -> None:
    if path.exists():
        raise LoadError(f"{path} already exists.")
    path.write_text(DEFAULT_CONFIG, encoding="utf-8")
