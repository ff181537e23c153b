"""Mock server configuration file."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError

from test_executor import yamlutil
from test_executor.errors import LoadError
from test_executor.loader import validation_error
from test_executor.schema import SchemaModel

from .iterator import Mock


class ServerConfig(SchemaModel):
    """``protocols`` maps a protocol name to its server settings."""

    protocols: dict[str, Any] = Field(default_factory=dict)
    mocks: list[Mock] = Field(default_factory=list)


def load_config(path: Path) -> ServerConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LoadError(f"failed to read {path}: {exc.strerror or exc}") from exc
    try:
        document = yamlutil.load(text)
    except yaml.YAMLError as exc:
        raise LoadError(f"failed to parse {path}: {exc}") from exc
    try:
        return ServerConfig.model_validate(document or {})
    except ValidationError as exc:
        raise validation_error(exc) from exc
