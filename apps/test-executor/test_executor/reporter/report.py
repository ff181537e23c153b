"""Machine readable reports generated from a finished reporter tree.

The tree is walked as files, scenarios, steps and sub-steps. The JSON form
mirrors the models below; the JUnit form nests
``<testsuites>/<testsuite>/<testcase>``.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from ..duration import format_duration, parse_duration
from .reporter import Reporter


def _to_seconds(value: object) -> object:
    if isinstance(value, str):
        return parse_duration(value).total_seconds()
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


TestDuration = Annotated[
    float,
    BeforeValidator(_to_seconds),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]


class TestResult(str, Enum):
    __test__ = False

    UNDEFINED = "undefined"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReportLogs(BaseModel):
    info: Optional[list[str]] = None
    error: Optional[list[str]] = None
    skip: Optional[str] = None


class SubStepReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    result: TestResult
    duration: TestDuration
    logs: ReportLogs = Field(default_factory=ReportLogs)
    sub_steps: Optional[list["SubStepReport"]] = Field(default=None, alias="subSteps")


class StepReport(SubStepReport):
    pass


class ScenarioReport(BaseModel):
    name: str
    file: str = Field(default="", exclude=True)
    result: TestResult
    duration: TestDuration
    steps: list[StepReport] = Field(default_factory=list)


class ScenarioFileReport(BaseModel):
    name: str
    result: TestResult
    duration: TestDuration
    scenarios: list[ScenarioReport] = Field(default_factory=list)


class TestReport(BaseModel):
    __test__ = False

    name: Optional[str] = None
    result: TestResult
    files: list[ScenarioFileReport] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    def to_junit(self) -> ET.Element:
        suites = ET.Element("testsuites")
        if self.name:
            suites.set("name", self.name)
        for file in self.files:
            failures = sum(1 for scenario in file.scenarios if scenario.result is TestResult.FAILED)
            suite = ET.SubElement(suites, "testsuite")
            if file.name:
                suite.set("name", file.name)
            suite.set("time", f"{file.duration:f}")
            suite.set("tests", str(len(file.scenarios)))
            suite.set("failures", str(failures))
            for scenario in file.scenarios:
                _append_testcase(suite, scenario)
        return suites

    def to_junit_xml(self) -> str:
        """Serialise :meth:`to_junit`, writing ``<system-out>`` as CDATA sections."""

        root = self.to_junit()
        sections: dict[str, str] = {}
        for i, element in enumerate(root.iter("system-out")):
            marker = f"__system_out_{i}__"
            sections[marker] = element.text or ""
            element.text = marker
        ET.indent(root, space="  ")
        text = ET.tostring(root, encoding="unicode")
        for marker, content in sections.items():
            text = text.replace(marker, _cdata(content), 1)
        return f'<?xml version="1.0" encoding="UTF-8"?>\n{text}\n'

    def write_json(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json() + "\n", encoding="utf-8")

    def write_junit(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_junit_xml(), encoding="utf-8")


def _cdata(text: str) -> str:
    # a CDATA section can't contain its own terminator
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def _append_testcase(suite: ET.Element, scenario: ScenarioReport) -> None:
    case = ET.SubElement(suite, "testcase")
    if scenario.name:
        case.set("name", scenario.name)
    if scenario.file:
        case.set("file", scenario.file)
    case.set("time", f"{scenario.duration:f}")
    if scenario.result is TestResult.FAILED:
        step = next((s for s in scenario.steps if s.result is TestResult.FAILED), None)
        if step is not None:
            failure = ET.SubElement(case, "failure")
            if step.name:
                failure.set("message", step.name)
            failure.text = "\n".join(step.logs.error or [])
            if step.logs.info:
                ET.SubElement(case, "system-out").text = "\n".join(step.logs.info)
    elif scenario.result is TestResult.SKIPPED:
        step = next((s for s in scenario.steps if s.result is TestResult.SKIPPED), None)
        if step is not None:
            skipped = ET.SubElement(case, "skipped")
            if step.name:
                skipped.set("message", step.name)
            skipped.text = step.logs.skip or ""


def result_of(node: Reporter) -> TestResult:
    if node.failed:
        return TestResult.FAILED
    if node.skipped:
        return TestResult.SKIPPED
    return TestResult.PASSED


def _logs(node: Reporter) -> ReportLogs:
    return ReportLogs(
        info=node.logs.info_logs() or None,
        error=node.logs.error_logs() or None,
        skip=node.logs.skip_log(),
    )


def _sub_steps(node: Reporter) -> Optional[list[SubStepReport]]:
    if not node.children:
        return None
    return [
        SubStepReport(
            name=child.short_name,
            result=result_of(child),
            duration=child.duration,
            logs=_logs(child),
            sub_steps=_sub_steps(child),
        )
        for child in node.children
    ]


def generate_test_report(root: Optional[Reporter]) -> TestReport:
    """Build the report of a finished root node."""

    if root is None:
        raise ValueError("reporter is nil")
    if not root.is_root:
        raise ValueError("must be a root reporter")
    report = TestReport(name=root.short_name or None, result=result_of(root))
    for file in root.children:
        file_report = ScenarioFileReport(name=file.short_name, result=result_of(file), duration=file.duration)
        for scenario in file.children:
            scenario_report = ScenarioReport(
                name=scenario.short_name,
                file=file.short_name,
                result=result_of(scenario),
                duration=scenario.duration,
            )
            for step in scenario.children:
                scenario_report.steps.append(
                    StepReport(
                        name=step.short_name,
                        result=result_of(step),
                        duration=step.duration,
                        logs=_logs(step),
                        sub_steps=_sub_steps(step),
                    )
                )
            file_report.scenarios.append(scenario_report)
        report.files.append(file_report)
    return report
