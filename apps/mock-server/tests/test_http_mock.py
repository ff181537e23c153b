from __future__ import annotations

import json
from http.client import HTTPConnection
from typing import Any, Optional

import pytest

from mock_server.config import ServerConfig
from mock_server.http_server import HTTPMockResponse, handle_request
from mock_server.iterator import Mock, MockIterator, MocksRemainError
from mock_server.server import MockServer
from test_executor.errors import MockViolation, PathError
from test_executor.protocol.http_codec import Header


def _json_header() -> Header:
    return Header.from_pairs([("Content-Type", "application/json")])


def test_handle_request_renders_response_from_request() -> None:
    iterator = MockIterator(
        [
            Mock(
                protocol="http",
                expect={"method": "POST", "path": "/users", "body": {"name": "alice"}},
                response={
                    "code": 201,
                    "header": {"X-Name": "{{request.body.name}}"},
                    "body": {"id": 1, "name": "{{request.body.name}}"},
                },
            )
        ]
    )

    code, header, payload = handle_request(iterator, "POST", "/users?dry=1", _json_header(), b'{"name": "alice"}')

    assert code == 201
    assert header.first("X-Name") == "alice"
    assert header.first("Content-Type") == "application/json"
    assert json.loads(payload) == {"id": 1, "name": "alice"}


def test_handle_request_reports_wrong_protocol() -> None:
    iterator = MockIterator([Mock(protocol="grpc")])

    with pytest.raises(MockViolation) as info:
        handle_request(iterator, "GET", "/", Header(), b"")
    assert str(info.value) == 'received HTTP request but the mock protocol is "grpc"'


def test_handle_request_reports_assertion_error() -> None:
    iterator = MockIterator([Mock(protocol="http", expect={"path": "/a"})])

    with pytest.raises(MockViolation) as info:
        handle_request(iterator, "GET", "/b", Header(), b"")
    assert str(info.value) == "assertion error: .path: expected /a but got /b"


def test_handle_request_checks_header_and_query() -> None:
    iterator = MockIterator(
        [
            Mock(
                protocol="http",
                expect={"header": {"X-Token": "secret"}},
                response={"body": "{{request.query.q[0]}}", "header": {"Content-Type": "text/plain"}},
            ),
            Mock(protocol="http", expect={"header": {"X-Token": "secret"}}),
        ]
    )

    code, _, payload = handle_request(iterator, "GET", "/search?q=cats", Header.from_pairs([("X-Token", "secret")]), b"")
    assert code == 200
    assert payload == b"cats"

    with pytest.raises(MockViolation) as info:
        handle_request(iterator, "GET", "/search", Header.from_pairs([("X-Token", "other")]), b"")
    assert "assertion error: .header.X-Token" in str(info.value)


def test_invalid_status_code() -> None:
    assert HTTPMockResponse(code="404").status_code() == 404
    assert HTTPMockResponse().status_code() == 200

    iterator = MockIterator([Mock(protocol="http", response={"code": "teapot"})])
    with pytest.raises(MockViolation) as info:
        handle_request(iterator, "GET", "/", Header(), b"")
    assert str(info.value) == 'failed to build response: invalid status code "teapot"'


@pytest.fixture()
def running():
    servers: list[MockServer] = []

    def start(mocks: list[dict]) -> MockServer:
        config = ServerConfig.model_validate({"protocols": {"http": {"port": 0}}, "mocks": mocks})
        server = MockServer(config)
        server.start()
        server.wait(5)
        servers.append(server)
        return server

    yield start
    for server in servers:
        try:
            server.stop()
        except MocksRemainError:
            pass


def _send(server: MockServer, method: str, path: str, body: Optional[Any] = None) -> tuple[int, str, bytes]:
    host, port = server.addrs()["http"].rsplit(":", 1)
    conn = HTTPConnection(host, int(port), timeout=5)
    try:
        headers = {}
        payload = None
        if body is not None:
            payload = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        conn.request(method, path, body=payload, headers=headers)
        response = conn.getresponse()
        return response.status, response.getheader("Content-Type", ""), response.read()
    finally:
        conn.close()


def test_live_server_consumes_mocks_in_order(running) -> None:
    server = running(
        [
            {"protocol": "http", "expect": {"path": "/first"}, "response": {"body": {"n": 1}}},
            {"protocol": "http", "expect": {"path": "/second"}, "response": {"code": 202}},
        ]
    )

    assert _send(server, "GET", "/_health")[0] == 200
    status, content_type, payload = _send(server, "POST", "/first", {"x": 1})
    assert status == 200
    assert content_type == "application/json"
    assert json.loads(payload) == {"n": 1}
    assert _send(server, "GET", "/second")[0] == 202

    status, content_type, payload = _send(server, "GET", "/third")
    assert status == 500
    assert content_type.startswith("text/plain")
    assert payload == b"no mocks remain"
    server.stop()


def test_live_server_reports_violation_as_500(running) -> None:
    server = running([{"protocol": "grpc"}])

    status, _, payload = _send(server, "GET", "/anything")

    assert status == 500
    assert payload.decode() == 'received HTTP request but the mock protocol is "grpc"'


def test_unknown_protocol_in_config() -> None:
    config = ServerConfig.model_validate({"protocols": {"ftp": {}}})

    with pytest.raises(PathError) as info:
        MockServer(config)
    assert str(info.value) == '.protocols.ftp: unknown protocol "ftp"'


@pytest.mark.parametrize(
    ("content_type", "body", "expected"),
    [
        ("application/x-www-form-urlencoded", b"name=alice&tag=a&tag=b", {"name": ["alice"], "tag": ["a", "b"]}),
        ("text/plain; charset=utf-8", b"hello mock", "hello mock"),
        ("application/xml", b"<user>alice</user>", "<user>alice</user>"),
    ],
)
def test_handle_request_decodes_body_by_content_type(content_type: str, body: bytes, expected: Any) -> None:
    iterator = MockIterator([Mock(protocol="http", expect={"body": expected})])

    code, _, _ = handle_request(iterator, "POST", "/", Header.from_pairs([("Content-Type", content_type)]), body)

    assert code == 200


def test_handle_request_rejects_malformed_json_body() -> None:
    iterator = MockIterator([Mock(protocol="http")])

    with pytest.raises(MockViolation) as info:
        handle_request(iterator, "POST", "/", _json_header(), b"{not json")
    assert str(info.value).startswith("failed to unmarshal request body: ")
