"""Scenario, step, retry policy and config file models."""

from __future__ import annotations

import random
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, model_validator
from tenacity import stop_after_attempt, stop_after_delay, stop_never, wait_exponential, wait_fixed

from .duration import parse_duration
from .ordered_map import OrderedMap


def _to_timedelta(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


Duration = Annotated[timedelta, BeforeValidator(_to_timedelta)]


class SchemaModel(BaseModel):
    """Strict model that accepts :class:`OrderedMap` input from the YAML loader."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, arbitrary_types_allowed=True)

    @model_validator(mode="before")
    @classmethod
    def _from_ordered_map(cls, data: Any) -> Any:
        if isinstance(data, OrderedMap):
            return dict(data.items())
        return data


class wait_randomized_exponential(wait_exponential):  # noqa: N801
    """Exponential wait spread by ``jitter`` on both sides of each interval."""

    def __init__(self, initial: float, factor: float, jitter: float, maximum: float) -> None:
        super().__init__(multiplier=initial, max=maximum, exp_base=factor)
        self.jitter = jitter

    def __call__(self, retry_state) -> float:
        interval = super().__call__(retry_state)
        delta = self.jitter * interval
        return random.uniform(interval - delta, interval + delta)


def _stop(max_retries: Optional[int], max_elapsed_time: Optional[timedelta]):
    retries = 5
    if max_retries is not None and max_retries >= 0:
        retries = max_retries
    # zero retries means retry forever
    stop = stop_never if retries == 0 else stop_after_attempt(retries + 1)
    if max_elapsed_time:
        stop = stop | stop_after_delay(max_elapsed_time.total_seconds())
    return stop


class ConstantRetryPolicy(SchemaModel):
    interval: Optional[Duration] = None
    max_retries: Optional[int] = Field(default=None, alias="maxRetries")
    max_elapsed_time: Optional[Duration] = Field(default=None, alias="maxElapsedTime")

    def build(self) -> dict[str, Any]:
        interval = self.interval if self.interval is not None else timedelta(seconds=1)
        return {
            "stop": _stop(self.max_retries, self.max_elapsed_time),
            "wait": wait_fixed(interval.total_seconds()),
        }


class ExponentialRetryPolicy(SchemaModel):
    initial_interval: Optional[Duration] = Field(default=None, alias="initialInterval")
    factor: Optional[float] = None
    jitter_factor: Optional[float] = Field(default=None, alias="jitterFactor")
    max_interval: Optional[Duration] = Field(default=None, alias="maxInterval")
    max_retries: Optional[int] = Field(default=None, alias="maxRetries")
    max_elapsed_time: Optional[Duration] = Field(default=None, alias="maxElapsedTime")

    def build(self) -> dict[str, Any]:
        initial = self.initial_interval if self.initial_interval is not None else timedelta(milliseconds=500)
        maximum = self.max_interval if self.max_interval is not None else timedelta(seconds=60)
        return {
            "stop": _stop(self.max_retries, self.max_elapsed_time),
            "wait": wait_randomized_exponential(
                initial=initial.total_seconds(),
                factor=self.factor if self.factor is not None else 1.5,
                jitter=self.jitter_factor if self.jitter_factor is not None else 0.5,
                maximum=maximum.total_seconds(),
            ),
        }


class RetryPolicy(SchemaModel):
    constant: Optional[ConstantRetryPolicy] = None
    exponential: Optional[ExponentialRetryPolicy] = None

    def build(self) -> dict[str, Any]:
        if self.constant is not None and self.exponential is not None:
            raise ValueError("ambiguous retry policy")
        if self.constant is not None:
            return self.constant.build()
        if self.exponential is not None:
            return self.exponential.build()
        return {"stop": stop_after_attempt(1), "wait": wait_fixed(0)}


class Bind(SchemaModel):
    vars: Optional[OrderedMap] = None


class Step(SchemaModel):
    id: Optional[str] = None
    title: str = ""
    description: str = ""
    vars: Optional[OrderedMap] = None
    protocol: str = ""
    request: Any = None
    expect: Any = None
    include: Optional[str] = None
    ref: Any = None
    bind: Bind = Field(default_factory=Bind)
    retry: Optional[RetryPolicy] = None

    @model_validator(mode="after")
    def _check_kind(self) -> "Step":
        given = [name for name in ("request", "include", "ref") if getattr(self, name) is not None]
        if len(given) > 1:
            raise ValueError(f"only one of request, include and ref can be specified: {', '.join(given)}")
        if self.protocol == "" and (self.request is not None or self.expect is not None):
            raise ValueError("protocol must be specified with request or expect")
        return self


class Scenario(SchemaModel):
    title: str = ""
    description: str = ""
    plugins: Optional[OrderedMap] = None
    vars: Optional[OrderedMap] = None
    steps: list[Step] = Field(default_factory=list)
    anchors: Any = None

    _filepath: str = PrivateAttr(default="")

    @property
    def filepath(self) -> str:
        return self._filepath


class PluginConfig(SchemaModel):
    src: str = ""


class FileReportConfig(SchemaModel):
    filename: str = ""


class ReportConfig(SchemaModel):
    json_: FileReportConfig = Field(default_factory=FileReportConfig, alias="json")
    junit: FileReportConfig = Field(default_factory=FileReportConfig)


class OutputConfig(SchemaModel):
    verbose: bool = False
    colored: Optional[bool] = None
    report: ReportConfig = Field(default_factory=ReportConfig)


class Config(SchemaModel):
    schema_version: str = Field(alias="schemaVersion")
    scenarios: list[str] = Field(default_factory=list)
    plugin_directory: Optional[str] = Field(default=None, alias="pluginDirectory")
    plugins: dict[str, PluginConfig] = Field(default_factory=dict)
    output: OutputConfig = Field(default_factory=OutputConfig)

    _root: Path = PrivateAttr(default_factory=Path.cwd)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: Union[str, Path]) -> Path:
        """Resolve ``path`` relative to the directory of the config file."""

        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self._root / candidate
