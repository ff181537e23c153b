from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from mock_server.config import ServerConfig
from mock_server.server import MockServer
from test_executor.main import app
from test_executor.version import __version__

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _scenario(path: Path, addr: str) -> Path:
    path.write_text(
        textwrap.dedent(
            f"""\
            title: ping
            steps:
              - title: GET /ping
                protocol: http
                request:
                  url: http://{addr}/ping
                expect:
                  code: 200
                  body:
                    pong: true
            """
        ),
        encoding="utf-8",
    )
    return path


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"test-executor version {__version__}" in result.stdout


def test_run_without_scenarios_fails() -> None:
    result = runner.invoke(app, ["run", "--log-format", "plain"])

    assert result.exit_code == 1
    assert "no scenario files given" in result.output


def test_config_init_and_validate(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "init"])
    assert result.exit_code == 0
    assert (tmp_path / "test-executor.yaml").exists()

    result = runner.invoke(app, ["config", "init"])
    assert result.exit_code == 1
    assert "already exists" in result.output

    result = runner.invoke(app, ["config", "validate"])
    assert result.exit_code == 0
    assert "is valid" in result.output


def test_config_validate_reports_errors(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("schemaVersion: config/v9\n", encoding="utf-8")

    result = runner.invoke(app, ["config", "validate", "--config", "broken.yaml"])

    assert result.exit_code == 1
    assert 'failed to load config: .schemaVersion: unknown version "config/v9"' in result.output


def test_list_prints_scenarios_and_steps(tmp_path: Path) -> None:
    _scenario(tmp_path / "ping.yaml", "127.0.0.1:1")

    result = runner.invoke(app, ["list", "ping.yaml"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert "ping.yaml" in lines
    assert lines.index("    ping") < lines.index("        GET /ping")


def test_run_against_mock_server(tmp_path: Path) -> None:
    config = ServerConfig.model_validate(
        {
            "protocols": {"http": {"port": 0}},
            "mocks": [{"protocol": "http", "expect": {"path": "/ping"}, "response": {"body": {"pong": True}}}],
        }
    )
    server = MockServer(config)
    server.start()
    server.wait(5)
    try:
        path = _scenario(tmp_path / "ping.yaml", server.addrs()["http"])
        result = runner.invoke(
            app,
            ["run", str(path), "--no-color", "--log-format", "plain", "--json-report", "report.json"],
        )
    finally:
        server.stop()

    assert result.exit_code == 0, result.output
    assert "1 tests run: 1 passed, 0 failed, 0 skipped" in result.stdout
    report = json.loads((tmp_path / "report.json").read_text(encoding="utf-8"))
    assert report["result"] == "passed"


def test_run_exits_non_zero_on_failure(tmp_path: Path) -> None:
    path = _scenario(tmp_path / "ping.yaml", "127.0.0.1:1")

    result = runner.invoke(app, ["run", str(path), "--no-color", "--log-format", "plain", "--junit-report", "junit.xml"])

    assert result.exit_code == 1
    assert "--- FAIL" in result.stdout
    assert "failed to send request" in result.stdout
    assert "<testsuites" in (tmp_path / "junit.xml").read_text(encoding="utf-8")
