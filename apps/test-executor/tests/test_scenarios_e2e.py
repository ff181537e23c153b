from __future__ import annotations

import io
import json
import textwrap
from pathlib import Path

import pytest

from mock_server.config import ServerConfig
from mock_server.iterator import MocksRemainError
from mock_server.server import MockServer
from test_executor.protocol.grpc_protocol import close_channels
from test_executor.reporter.report import TestResult, generate_test_report
from test_executor.runner import PREVIOUS_STEP_FAILED, ScenarioRunner


def _start_mocks(mocks: list[dict]) -> MockServer:
    config = ServerConfig.model_validate({"protocols": {"http": {"port": 0}}, "mocks": mocks})
    server = MockServer(config)
    server.start()
    server.wait(5)
    return server


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def _run(path: Path):
    writer = io.StringIO()
    root = ScenarioRunner(paths=[path]).execute(writer=writer, enabled_summary=True)
    return root, writer.getvalue()


def _step_results(root) -> list[TestResult]:
    report = generate_test_report(root)
    return [step.result for step in report.files[0].scenarios[0].steps]


def test_http_echo(tmp_path: Path) -> None:
    server = _start_mocks(
        [
            {
                "protocol": "http",
                "expect": {"method": "POST", "path": "/echo", "body": {"message": "hello"}},
                "response": {"code": 200, "body": "{{request.body}}"},
            }
        ]
    )
    path = _write(
        tmp_path,
        "echo.yaml",
        f"""\
        title: echo
        vars:
          addr: {server.addrs()["http"]}
        steps:
          - title: POST /echo
            protocol: http
            request:
              method: POST
              url: "http://{{{{vars.addr}}}}/echo"
              body:
                message: hello
            expect:
              code: OK
              body:
                message: hello
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output
    assert _step_results(root) == [TestResult.PASSED]
    assert "1 tests run: 1 passed, 0 failed, 0 skipped" in output


def test_retry_until_mock_succeeds(tmp_path: Path) -> None:
    failing = {"protocol": "http", "expect": {"path": "/flaky"}, "response": {"code": 503}}
    server = _start_mocks(
        [failing, failing, {"protocol": "http", "expect": {"path": "/flaky"}, "response": {"code": "200"}}]
    )
    path = _write(
        tmp_path,
        "retry.yaml",
        f"""\
        title: retry
        steps:
          - title: flaky endpoint
            protocol: http
            request:
              url: http://{server.addrs()["http"]}/flaky
            expect:
              code: 200
            retry:
              constant:
                interval: 10ms
                maxRetries: 3
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output
    step = generate_test_report(root).files[0].scenarios[0].steps[0]
    assert [sub.name for sub in step.sub_steps] == ["attempt 1", "attempt 2", "attempt 3"]


def test_bind_and_reuse(tmp_path: Path) -> None:
    server = _start_mocks(
        [
            {
                "protocol": "http",
                "expect": {"method": "POST", "path": "/users"},
                "response": {"code": 201, "body": {"id": 42, "name": "alice"}},
            },
            {
                "protocol": "http",
                "expect": {"method": "GET", "path": "/users/42", "header": {"X-Created": "passed"}},
                "response": {"body": {"id": 42, "name": "alice"}},
            },
        ]
    )
    addr = server.addrs()["http"]
    path = _write(
        tmp_path,
        "bind.yaml",
        f"""\
        title: bind
        steps:
          - title: create
            id: create
            protocol: http
            request:
              method: POST
              url: http://{addr}/users
              body:
                name: alice
            expect:
              code: Created
            bind:
              vars:
                userId: "{{{{response.id}}}}"
          - title: fetch
            protocol: http
            request:
              url: "http://{addr}/users/{{{{vars.userId}}}}"
              header:
                X-Created: "{{{{steps.create.result}}}}"
            expect:
              body:
                id: "{{{{vars.userId}}}}"
                name: alice
          - title: check step result
            vars:
              created: "{{{{steps.create.result}}}}"
            ref:
              title: noop
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output
    assert _step_results(root) == [TestResult.PASSED] * 3


def test_failed_step_skips_the_rest(tmp_path: Path) -> None:
    server = _start_mocks([{"protocol": "http", "response": {"code": 404}}])
    addr = server.addrs()["http"]
    path = _write(
        tmp_path,
        "skip.yaml",
        f"""\
        title: skip
        steps:
          - title: missing
            protocol: http
            request:
              url: http://{addr}/missing
            expect:
              code: 200
          - title: never sent
            protocol: http
            request:
              url: http://{addr}/never
        """,
    )

    root, output = _run(path)
    server.stop()

    assert root.failed
    assert _step_results(root) == [TestResult.FAILED, TestResult.SKIPPED]
    report = generate_test_report(root)
    assert report.files[0].scenarios[0].steps[1].logs.skip == PREVIOUS_STEP_FAILED
    assert ".steps[0].expect.code: " in output


def test_assertion_failure_reports_path(tmp_path: Path) -> None:
    server = _start_mocks([{"protocol": "http", "response": {"body": {"name": "bob"}}}])
    path = _write(
        tmp_path,
        "assert.yaml",
        f"""\
        title: assertion
        steps:
          - title: get user
            protocol: http
            request:
              url: http://{server.addrs()["http"]}/users/1
            expect:
              body:
                name: alice
        """,
    )

    root, output = _run(path)
    server.stop()

    assert root.failed
    assert ".steps[0].expect.body.name: expected alice but got bob" in output
    report = json.loads(generate_test_report(root).to_json())
    assert report["result"] == "failed"
    assert report["files"][0]["scenarios"][0]["steps"][0]["result"] == "failed"


def test_mocks_remain(tmp_path: Path) -> None:
    server = _start_mocks(
        [
            {"protocol": "http", "response": {"code": 200}},
            {"protocol": "http", "response": {"code": 200}},
        ]
    )
    path = _write(
        tmp_path,
        "remain.yaml",
        f"""\
        title: remain
        steps:
          - title: only request
            protocol: http
            request:
              url: http://{server.addrs()["http"]}/ping
        """,
    )

    root, output = _run(path)

    assert not root.failed, output
    with pytest.raises(MocksRemainError) as info:
        server.stop()
    assert str(info.value) == "last 1 mocks remain"


def test_include_runs_scenario_as_sub_step(tmp_path: Path) -> None:
    server = _start_mocks([{"protocol": "http", "expect": {"path": "/login"}, "response": {"body": {"token": "t"}}}])
    _write(
        tmp_path,
        "login.yml",
        f"""\
        title: login
        steps:
          - title: login
            protocol: http
            request:
              url: http://{server.addrs()["http"]}/login
            expect:
              body:
                token: t
        """,
    )
    main_dir = tmp_path / "main"
    main_dir.mkdir()
    path = _write(
        main_dir,
        "main.yaml",
        """\
        title: main
        steps:
          - title: include login
            include: ../login.yml
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output
    step = generate_test_report(root).files[0].scenarios[0].steps[0]
    assert step.sub_steps[0].name == "../login.yml"


def test_include_exposes_bound_vars(tmp_path: Path) -> None:
    server = _start_mocks(
        [
            {"protocol": "http", "expect": {"path": "/login"}, "response": {"body": {"token": "abc"}}},
            {
                "protocol": "http",
                "expect": {"path": "/profile", "header": {"Authorization": "Bearer abc"}},
                "response": {"body": {"name": "alice"}},
            },
        ]
    )
    addr = server.addrs()["http"]
    _write(
        tmp_path,
        "login.yml",
        f"""\
        title: login
        steps:
          - title: login
            protocol: http
            request:
              url: http://{addr}/login
            bind:
              vars:
                token: "{{{{response.token}}}}"
        """,
    )
    path = _write(
        tmp_path,
        "profile.yaml",
        f"""\
        title: profile
        steps:
          - title: include login
            include: login.yml
            bind:
              vars:
                t: "{{{{vars.token}}}}"
          - title: profile
            protocol: http
            request:
              url: http://{addr}/profile
              header:
                Authorization: "Bearer {{{{vars.t}}}}"
            expect:
              body:
                name: alice
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output
    assert _step_results(root) == [TestResult.PASSED, TestResult.PASSED]


def test_expressions_in_scenario(tmp_path: Path) -> None:
    server = _start_mocks(
        [
            {
                "protocol": "http",
                "expect": {"method": "POST", "path": "/orders", "body": {"total": 30, "express": True}},
                "response": {"code": 201, "body": {"total": 30, "label": "order-7"}},
            }
        ]
    )
    path = _write(
        tmp_path,
        "expressions.yaml",
        f"""\
        title: expressions
        vars:
          price: 10
          quantity: 3
          orderId: 7
        steps:
          - title: create order
            protocol: http
            request:
              method: POST
              url: http://{server.addrs()["http"]}/orders
              body:
                total: "{{{{vars.price * vars.quantity}}}}"
                express: "{{{{vars.price * vars.quantity >= 30 && !defined(vars.coupon)}}}}"
            expect:
              code: Created
              body:
                total: "{{{{vars.discount ?? vars.price * vars.quantity}}}}"
                label: "order-{{{{vars.orderId}}}}"
        """,
    )

    root, output = _run(path)
    server.stop()

    assert not root.failed, output


ECHO_PROTO = """\
syntax = "proto3";

package echo;

service Echo {
  rpc Say(SayRequest) returns (SayResponse);
}

message SayRequest {
  string message = 1;
}

message SayResponse {
  string message = 1;
  int32 count = 2;
}
"""


def test_grpc_through_reflection(tmp_path: Path) -> None:
    proto = tmp_path / "echo.proto"
    proto.write_text(ECHO_PROTO, encoding="utf-8")
    config = ServerConfig.model_validate(
        {
            "protocols": {"grpc": {"port": 0, "proto": {"files": [str(proto)]}}},
            "mocks": [
                {
                    "protocol": "grpc",
                    "expect": {"method": "Say", "metadata": {"x-user": "alice"}, "message": {"message": "hello"}},
                    "response": {"message": {"message": "{{request.message.message}}", "count": 1}},
                },
                {"protocol": "grpc", "response": {"status": {"code": "NotFound", "message": "gone"}}},
            ],
        }
    )
    server = MockServer(config)
    server.start()
    server.wait(10)
    addr = server.addrs()["grpc"]
    path = _write(
        tmp_path,
        "grpc.yaml",
        f"""\
        title: grpc
        steps:
          - title: say hello
            protocol: grpc
            request:
              target: {addr}
              method: echo.Echo/Say
              metadata:
                x-user: alice
              message:
                message: hello
            expect:
              code: OK
              message:
                message: hello
                count: 1
          - title: not found
            protocol: grpc
            request:
              target: {addr}
              method: echo.Echo/Say
              message:
                message: again
            expect:
              status:
                code: NotFound
                message: gone
        """,
    )

    try:
        root, output = _run(path)
    finally:
        close_channels()
        server.stop()

    assert not root.failed, output
    assert _step_results(root) == [TestResult.PASSED, TestResult.PASSED]
