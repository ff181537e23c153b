"""HTTP mock server answering each request with the next queued mock."""

from __future__ import annotations

import socketserver
import threading
import urllib.request
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

import structlog
from pydantic import ValidationError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_delay, stop_never, wait_fixed

from test_executor.assertion.builder import AllOf, PathAssertion, build, build_header_assertion
from test_executor.assertion.core import Assertion
from test_executor.context import Context
from test_executor.errors import CancelledError, MockViolation
from test_executor.ordered_map import OrderedMap
from test_executor.protocol.http_codec import (
    DEFAULT_MEDIA_TYPE,
    Header,
    convert_strings_map,
    marshaler_for,
    unmarshaler_for,
)
from test_executor.schema import SchemaModel

from .iterator import MockIterator
from .protocol import MockProtocol, Server, ServerClosedError

LOGGER = structlog.get_logger("mock-server")

HEALTH_PATH = "/_health"
POLL_INTERVAL = 0.1


class HTTPServerConfig(SchemaModel):
    host: str = "127.0.0.1"
    port: int = 0


class HTTPMockExpect(SchemaModel):
    method: Optional[str] = None
    path: Optional[str] = None
    header: Optional[dict[str, Any]] = None
    body: Any = None

    def build(self, ctx: Context) -> Assertion:
        expects = OrderedMap()
        for key in ("method", "path"):
            if getattr(self, key) is not None:
                expects[key] = getattr(self, key)
        if self.body is not None:
            expects["body"] = self.body
        header = build_header_assertion(self.header, ctx)
        return AllOf([build(expects, ctx), PathAssertion(["header"], header)])


class HTTPMockResponse(SchemaModel):
    code: Any = None
    header: Any = None
    body: Any = None

    def status_code(self) -> int:
        if self.code is None or self.code == "":
            return HTTPStatus.OK
        if isinstance(self.code, int) and not isinstance(self.code, bool):
            return self.code
        if isinstance(self.code, str) and self.code.isdigit():
            return int(self.code)
        raise ValueError(f'invalid status code "{self.code}"')


def handle_request(
    iterator: MockIterator,
    method: str,
    target: str,
    header: Header,
    body: bytes,
) -> tuple[int, Header, bytes]:
    """Consume one mock for an incoming request and build the reply.

    Raises :class:`MockViolation` when the request cannot be answered.
    """

    mock = iterator.next()
    if mock.protocol.lower() != "http":
        raise MockViolation(f'received HTTP request but the mock protocol is "{mock.protocol}"')

    try:
        expect = HTTPMockExpect.model_validate(mock.expect or {})
    except ValidationError as exc:
        raise MockViolation(f"failed to unmarshal expect: {exc}") from exc
    ctx = Context()
    try:
        assertion = expect.build(ctx)
    except Exception as exc:  # noqa: BLE001
        raise MockViolation(f"failed to build assertion: {exc}") from exc

    url = urlsplit(target)
    decoded: Any = None
    if body:
        # bodies of unknown media types are kept as text
        _, unmarshal = unmarshaler_for(header.first("Content-Type") or DEFAULT_MEDIA_TYPE, fallback="text/plain")
        try:
            decoded = unmarshal(body)
        except ValueError as exc:
            raise MockViolation(f"failed to unmarshal request body: {exc}") from exc
    request = OrderedMap(
        [
            ("method", method),
            ("path", url.path),
            ("header", header),
            ("body", decoded),
            ("query", OrderedMap(parse_qs(url.query, keep_blank_values=True))),
        ]
    )
    try:
        assertion.assert_value(request)
    except Exception as exc:  # noqa: BLE001
        raise MockViolation(f"assertion error: {exc}") from exc

    ctx = ctx.with_request(request)
    try:
        response = HTTPMockResponse.model_validate(mock.response or {})
    except ValidationError as exc:
        raise MockViolation(f"failed to unmarshal response: {exc}") from exc
    try:
        code = response.status_code()
        rendered_header = convert_strings_map(ctx.execute_template(response.header))
        rendered_body = ctx.execute_template(response.body)
    except Exception as exc:  # noqa: BLE001
        raise MockViolation(f"failed to build response: {exc}") from exc

    reply_header = Header()
    for name, values in rendered_header.items():
        for value in values:
            reply_header.add(name, value)
    payload = b""
    if rendered_body is not None:
        kind, marshal = marshaler_for(reply_header.first("Content-Type"))
        if not reply_header.first("Content-Type"):
            reply_header.add("Content-Type", kind)
        try:
            payload = marshal(rendered_body)
        except (TypeError, ValueError) as exc:
            raise MockViolation(f"failed to marshal response body: {exc}") from exc
    return code, reply_header, payload


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class HTTPMockServer(Server):
    def __init__(self, iterator: MockIterator, config: HTTPServerConfig) -> None:
        self._iterator = iterator
        self._config = config
        self._httpd: Optional[ThreadedHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._logger = LOGGER.bind(protocol="http")

    def start(self) -> None:
        httpd = ThreadedHTTPServer((self._config.host, self._config.port), self._build_handler_factory())
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._logger = self._logger.bind(host=httpd.server_address[0], port=httpd.server_address[1])
        self._logger.info("server_started")

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._httpd is None:
            raise ServerClosedError()
        url = f"http://{self.addr()}{HEALTH_PATH}"
        retrying = Retrying(
            stop=stop_never if timeout is None else stop_after_delay(timeout),
            wait=wait_fixed(POLL_INTERVAL),
            retry=retry_if_exception_type(OSError),
        )
        try:
            retrying(_get_health, url)
        except RetryError as exc:
            raise CancelledError(f"http mock server is not ready: {exc.last_attempt.exception()}") from exc

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._httpd is None:
            raise ServerClosedError()
        httpd, self._httpd = self._httpd, None
        try:
            httpd.shutdown()
            httpd.server_close()
        finally:
            if self._thread is not None:
                self._thread.join(timeout=timeout)
        self._logger.info("server_stopped")

    def addr(self) -> str:
        if self._httpd is None:
            return ""
        host, port = self._httpd.server_address[:2]
        return f"{host}:{port}"

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        iterator = self._iterator
        handler_logger = self._logger

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr noise
                handler_logger.debug("http_trace", client_ip=self.client_address[0], message=format % args)

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def do_OPTIONS(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self) -> None:
                if urlsplit(self.path).path == HEALTH_PATH:
                    self._respond(HTTPStatus.OK, Header(), b"")
                    return
                body = self.rfile.read(int(self.headers.get("Content-Length", 0) or 0))
                header = Header.from_pairs(self.headers.items())
                request_logger = handler_logger.bind(method=self.command, path=self.path)
                try:
                    code, reply_header, payload = handle_request(iterator, self.command, self.path, header, body)
                except MockViolation as exc:
                    request_logger.error("mock_violation", error=str(exc))
                    error_header = Header()
                    error_header.add("Content-Type", "text/plain; charset=utf-8")
                    self._respond(HTTPStatus.INTERNAL_SERVER_ERROR, error_header, str(exc).encode("utf-8"))
                    return
                request_logger.info("mock_consumed", status=code)
                self._respond(code, reply_header, payload)

            def _respond(self, status: int, header: Header, payload: bytes) -> None:
                self.send_response(status)
                for name, values in header.items():
                    if name == "Content-Length":
                        continue
                    for value in values:
                        self.send_header(name, value)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

        return Handler


def _get_health(url: str) -> None:
    with urllib.request.urlopen(url, timeout=1) as response:  # noqa: S310 - local health endpoint
        response.read()


class HTTPMockProtocol(MockProtocol):
    name = "http"

    def unmarshal_config(self, value: Any) -> HTTPServerConfig:
        return HTTPServerConfig.model_validate(value or {})

    def new_server(self, iterator: MockIterator, config: HTTPServerConfig) -> HTTPMockServer:
        return HTTPMockServer(iterator, config)
