"""HTTP request invoker and response expectation."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Optional
from urllib import error, request
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .. import yamlutil
from ..assertion.builder import build, build_header_assertion
from ..assertion.core import Assertion
from ..errors import AssertionFailure, PathError, RequestError, error_path, with_path, wrap
from ..ordered_map import OrderedMap
from ..schema import SchemaModel
from ..template.functions import type_name
from ..version import __version__
from .http_codec import Header, convert_strings_map, decode_body, marshaler_for
from .registry import AssertionBuilder, Invoker, Protocol

if TYPE_CHECKING:
    from ..context import Context

DEFAULT_USER_AGENT = f"test-executor/{__version__}"
DEFAULT_TIMEOUT = 30.0


class Response(BaseModel):
    """Result of one HTTP call as seen by expectations."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: str
    code: int
    header: Header = Field(default_factory=Header)
    body: Any = None


class Request(SchemaModel, Invoker):
    method: str = ""
    url: Any = ""
    query: Any = None
    header: Any = Field(default=None, validation_alias=AliasChoices("header", "headers"))
    body: Any = None

    def invoke(self, ctx: "Context") -> tuple["Context", Response]:
        req, body = self._build_request(ctx)
        ctx = ctx.with_request(body)
        dump = OrderedMap(
            [
                ("method", req.get_method()),
                ("url", req.full_url),
                ("header", Header.from_pairs(req.header_items())),
            ]
        )
        if body is not None:
            dump["body"] = body
        ctx.reporter.log("request:\n%s", yamlutil.dump(dump))

        try:
            with request.urlopen(req, timeout=DEFAULT_TIMEOUT) as resp:
                response = self._read(resp.status, resp.reason, resp.headers.items(), resp.read())
        except error.HTTPError as exc:
            with exc:
                response = self._read(exc.code, exc.reason, exc.headers.items(), exc.read())
        except error.URLError as exc:
            raise RequestError(f"failed to send request: {exc.reason}") from exc
        except OSError as exc:
            raise RequestError(f"failed to send request: {exc}") from exc

        if response.body is not None:
            ctx = ctx.with_response(response.body)
        ctx.reporter.log(
            "response:\n%s",
            yamlutil.dump(OrderedMap([("status", response.status), ("header", response.header), ("body", response.body)])),
        )
        return ctx, response

    @staticmethod
    def _read(code: int, reason: Any, headers: Any, data: bytes) -> Response:
        header = Header.from_pairs(headers)
        try:
            body = decode_body(data, header)
        except (OSError, ValueError) as exc:
            raise RequestError(f"failed to read response body: {exc}") from exc
        phrase = str(reason or "")
        if not phrase:
            try:
                phrase = HTTPStatus(code).phrase
            except ValueError:
                phrase = ""
        return Response(status=f"{code} {phrase}".rstrip(), code=code, header=header, body=body)

    def _build_request(self, ctx: "Context") -> tuple[request.Request, Any]:
        method = (self.method or "GET").upper()
        try:
            url = ctx.execute_template(self.url)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "failed to get URL"), "url") from exc
        if not isinstance(url, str):
            raise error_path("url", f'URL must be "string" but got "{type_name(url)}"', RequestError)

        if self.query is not None:
            try:
                query = convert_strings_map(ctx.execute_template(self.query))
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "failed to set query"), "query") from exc
            parts = urlsplit(url)
            pairs = parse_qsl(parts.query, keep_blank_values=True)
            pairs.extend((key, value) for key, values in query.items() for value in values)
            url = urlunsplit(parts._replace(query=urlencode(pairs)))

        header = Header()
        if self.header is not None:
            try:
                values = convert_strings_map(ctx.execute_template(self.header))
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "failed to set header"), "header") from exc
            for name, items in values.items():
                for item in items:
                    header.add(name, item)
        if not header.first("User-Agent"):
            header["User-Agent"] = [DEFAULT_USER_AGENT]

        data: Optional[bytes] = None
        body = None
        if self.body is not None:
            try:
                body = ctx.execute_template(self.body)
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "failed to create request"), "body") from exc
            kind, marshal = marshaler_for(header.first("Content-Type"))
            try:
                data = marshal(body)
            except (TypeError, ValueError) as exc:
                raise error_path("body", f"failed to marshal request body as {kind}: {body!r}: {exc}") from exc
            if not header.first("Content-Type"):
                header["Content-Type"] = [kind]

        req = request.Request(url, data=data, method=method)
        for name, items in header.items():
            # urllib keeps a single value per header name
            req.add_header(name, ", ".join(items))
        return req, body


class ResponseAssertion(Assertion):
    def __init__(self, code: Assertion, header: Assertion, body: Assertion) -> None:
        self.code = code
        self.header = header
        self.body = body

    def assert_value(self, value: Any) -> None:
        if not isinstance(value, Response):
            raise AssertionFailure(f"expected response but got {type_name(value)}")
        try:
            assert_code(self.code, value.status)
        except Exception as exc:  # noqa: BLE001
            raise with_path(exc, "code") from exc
        try:
            self.header.assert_value(value.header)
        except Exception as exc:  # noqa: BLE001
            raise with_path(exc, "header") from exc
        try:
            self.body.assert_value(value.body)
        except Exception as exc:  # noqa: BLE001
            raise with_path(exc, "body") from exc


def assert_code(assertion: Assertion, status: str) -> None:
    """Accept either the numeric code or the reason phrase of ``status``."""

    parts = status.split(" ", 1)
    if len(parts) != 2:
        raise AssertionFailure(f'unexpected response status string: "{status}"')
    try:
        assertion.assert_value(parts[0])
        return
    except PathError:
        pass
    assertion.assert_value(parts[1])


class Expect(SchemaModel, AssertionBuilder):
    code: Any = None
    header: Optional[OrderedMap] = None
    body: Any = None

    def build(self, ctx: "Context") -> Assertion:
        code = "200" if self.code in (None, "") else self.code
        if isinstance(code, int) and not isinstance(code, bool):
            code = str(code)
        try:
            code_assertion = build(code, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect status code"), "code") from exc
        try:
            header_assertion = build_header_assertion(self.header, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect header"), "header") from exc
        try:
            body_assertion = build(self.body, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect response body"), "body") from exc
        return ResponseAssertion(code_assertion, header_assertion, body_assertion)


class HTTP(Protocol):
    name = "http"

    def unmarshal_request(self, value: Any) -> Request:
        return Request.model_validate(value if value is not None else {})

    def unmarshal_expect(self, value: Any) -> Expect:
        return Expect.model_validate(value if value is not None else {})
