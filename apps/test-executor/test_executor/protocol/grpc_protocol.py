"""gRPC unary invoker backed by dynamic protobuf messages."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Optional

import grpc
from google.protobuf import symbol_database
from google.rpc import error_details_pb2  # noqa: F401 - registers the standard detail messages
from grpc_status import rpc_status
from pydantic import AliasChoices, Field

from .. import yamlutil
from ..assertion.builder import build, build_header_assertion
from ..assertion.core import Assertion
from ..errors import AssertionFailure, CompileError, RequestError, error_path, with_path, wrap
from ..ordered_map import OrderedMap
from ..schema import Duration, SchemaModel
from ..template.functions import type_name
from .grpc_codes import code_name, code_number
from .grpc_proto import Metadata, ProtoSet, load_protos, message_class, message_to_map, new_message, reflection_protos
from .http_codec import convert_strings_map
from .registry import AssertionBuilder, Invoker, Protocol

if TYPE_CHECKING:
    from ..context import Context

_channels_lock = threading.Lock()
_channels: dict[str, grpc.Channel] = {}


def channel_for(target: str) -> grpc.Channel:
    """Return the pooled insecure channel of ``target``."""

    with _channels_lock:
        channel = _channels.get(target)
        if channel is None:
            channel = grpc.insecure_channel(target)
            _channels[target] = channel
        return channel


def close_channels() -> None:
    with _channels_lock:
        for channel in _channels.values():
            channel.close()
        _channels.clear()


class ProtoOptions(SchemaModel):
    imports: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)


class ReflectionOptions(SchemaModel):
    enabled: bool = False


class RequestOptions(SchemaModel):
    proto: Optional[ProtoOptions] = None
    reflection: Optional[ReflectionOptions] = None


class GRPCRequestDump:
    """Rendered request visible as ``{{request}}``; unknown keys fall back to the message."""

    def __init__(self, method: str, metadata: Metadata, message: Any) -> None:
        self.method = method
        self.metadata = metadata
        self.message = message

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if key in ("method", "metadata", "message"):
            return getattr(self, key), True
        if isinstance(self.message, OrderedMap):
            return self.message.extract_by_key(key)
        return None, False


class GRPCResponse:
    """Outcome of a unary call visible as ``{{response}}``."""

    def __init__(
        self,
        code: grpc.StatusCode,
        message: Optional[OrderedMap],
        status_message: str = "",
        header: Optional[Metadata] = None,
        trailer: Optional[Metadata] = None,
        details: Optional[list[OrderedMap]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.header = header if header is not None else Metadata()
        self.trailer = trailer if trailer is not None else Metadata()
        self.status = OrderedMap(
            [("code", code_name(code)), ("message", status_message), ("details", details or [])]
        )

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if key in ("status", "header", "trailer", "message"):
            return getattr(self, key), True
        if isinstance(self.message, OrderedMap):
            return self.message.extract_by_key(key)
        return None, False

    def dump(self) -> OrderedMap:
        result = OrderedMap()
        status = OrderedMap((k, v) for k, v in self.status.items() if v)
        result["status"] = status
        if self.header:
            result["header"] = self.header
        if self.trailer:
            result["trailer"] = self.trailer
        if self.message is not None:
            result["message"] = self.message
        return result

    def details_string(self) -> str:
        details = self.status["details"]
        if not details:
            return ""
        items = []
        for detail in details:
            for name, fields in detail.items():
                items.append(f"{name}: {{{yamlutil.dump_inline(fields)}}}")
        return f": details=[ {', '.join(items)} ]"


def _status_details(call: Any) -> list[OrderedMap]:
    try:
        status = rpc_status.from_call(call)
    except ValueError:
        return []
    if status is None:
        return []
    details = []
    for detail in status.details:
        name = detail.type_url.rsplit("/", 1)[-1]
        try:
            cls = symbol_database.Default().GetSymbol(name)
        except KeyError:
            details.append(OrderedMap([(name, OrderedMap([("value", detail.value)]))]))
            continue
        msg = cls()
        detail.Unpack(msg)
        details.append(OrderedMap([(name, message_to_map(msg))]))
    return details


class Request(SchemaModel, Invoker):
    target: Any = Field(default="", validation_alias=AliasChoices("target", "host"))
    service: str = ""
    method: str = ""
    metadata: Any = None
    message: Any = None
    timeout: Optional[Duration] = None
    options: RequestOptions = Field(default_factory=RequestOptions)

    def _full_method(self) -> str:
        if self.service:
            return f"{self.service}/{self.method}"
        return self.method

    def _resolve(self, channel: grpc.Channel) -> ProtoSet:
        proto = self.options.proto
        reflection = self.options.reflection
        if proto is not None and proto.files and not (reflection is not None and reflection.enabled):
            try:
                return load_protos(proto.files, proto.imports)
            except CompileError as exc:
                raise with_path(exc, "options.proto") from exc
        return reflection_protos(channel)

    def invoke(self, ctx: "Context") -> tuple["Context", GRPCResponse]:
        if not self.target:
            raise error_path("target", "target must be specified", RequestError)
        try:
            target = ctx.execute_template(self.target)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid target"), "target") from exc
        if not isinstance(target, str):
            raise error_path("target", f"target must be string but {type_name(target)}", RequestError)

        channel = channel_for(target)
        protos = self._resolve(channel)
        try:
            method = protos.find_method(self._full_method())
        except grpc.RpcError as exc:
            raise RequestError(f"{target} doesn't implement gRPC reflection service: {exc}") from exc
        except CompileError as exc:
            raise with_path(exc, "method") from exc

        try:
            metadata_values = convert_strings_map(ctx.execute_template(self.metadata))
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "failed to set metadata"), "metadata") from exc
        metadata = Metadata()
        for key, values in metadata_values.items():
            for value in values:
                metadata.add(key, value)

        try:
            message = ctx.execute_template(self.message)
            request = new_message(method.input_type, message)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "failed to build request message"), "message") from exc

        full_method = f"/{method.containing_service.full_name}/{method.name}"
        ctx = ctx.with_request(GRPCRequestDump(full_method, metadata, message_to_map(request)))
        dump = OrderedMap([("method", full_method)])
        if metadata:
            dump["metadata"] = metadata
        dump["message"] = message_to_map(request)
        ctx.reporter.log("request:\n%s", yamlutil.dump(dump))

        response_type = message_class(method.output_type)
        stub = channel.unary_unary(
            full_method,
            request_serializer=lambda msg: msg.SerializeToString(),
            response_deserializer=response_type.FromString,
        )
        call_metadata = [(key, value) for key, values in metadata.items() for value in values]
        timeout = self.timeout.total_seconds() if isinstance(self.timeout, timedelta) else None
        try:
            reply, call = stub.with_call(request, metadata=call_metadata or None, timeout=timeout)
            response = GRPCResponse(
                grpc.StatusCode.OK,
                message_to_map(reply),
                header=Metadata.from_pairs(call.initial_metadata()),
                trailer=Metadata.from_pairs(call.trailing_metadata()),
            )
        except grpc.RpcError as exc:
            if not isinstance(exc, grpc.Call):
                raise RequestError(f"failed to invoke {full_method}: {exc}") from exc
            response = GRPCResponse(
                exc.code(),
                None,
                status_message=exc.details() or "",
                header=Metadata.from_pairs(exc.initial_metadata()),
                trailer=Metadata.from_pairs(exc.trailing_metadata()),
                details=_status_details(exc),
            )

        ctx = ctx.with_response(response)
        ctx.reporter.log("response:\n%s", yamlutil.dump(response.dump()))
        return ctx, response


class ExpectStatus(SchemaModel):
    code: Any = None
    message: Any = None
    details: Optional[list[OrderedMap]] = None


class ResponseAssertion(Assertion):
    def __init__(
        self,
        code_path: str,
        code: Assertion,
        status_message: Optional[Assertion],
        details: list[tuple[str, Assertion, Assertion]],
        header: Assertion,
        trailer: Assertion,
        message: Assertion,
    ) -> None:
        self.code_path = code_path
        self.code = code
        self.status_message = status_message
        self.details = details
        self.header = header
        self.trailer = trailer
        self.message = message

    def assert_value(self, value: Any) -> None:
        if not isinstance(value, GRPCResponse):
            raise AssertionFailure(f"failed to convert to response type. type is {type_name(value)}")
        try:
            self._assert_code(value)
        except Exception as exc:  # noqa: BLE001
            raise with_path(exc, self.code_path) from exc
        if self.status_message is not None:
            try:
                self.status_message.assert_value(value.status["message"])
            except Exception as exc:  # noqa: BLE001
                raise with_path(_suffix(exc, value.details_string()), "status.message") from exc
        self._assert_details(value)
        for path, assertion, actual in (
            ("header", self.header, value.header),
            ("trailer", self.trailer, value.trailer),
            ("message", self.message, value.message),
        ):
            try:
                assertion.assert_value(actual)
            except Exception as exc:  # noqa: BLE001
                raise with_path(exc, path) from exc

    def _assert_code(self, value: GRPCResponse) -> None:
        try:
            self.code.assert_value(code_name(value.code))
            return
        except Exception:  # noqa: BLE001
            pass
        try:
            self.code.assert_value(str(code_number(value.code)))
        except Exception as exc:  # noqa: BLE001
            raise AssertionFailure(
                f'{exc}: message="{value.status["message"]}"{value.details_string()}'
            ) from exc

    def _assert_details(self, value: GRPCResponse) -> None:
        actual = value.status["details"]
        for i, (name, name_assertion, fields_assertion) in enumerate(self.details):
            path = f"status.details[{i}]"
            if i >= len(actual):
                raise AssertionFailure(f"not found{value.details_string()}", f".{path}")
            actual_name, actual_fields = next(iter(actual[i].items()))
            try:
                name_assertion.assert_value(actual_name)
                try:
                    fields_assertion.assert_value(actual_fields)
                except Exception as exc:  # noqa: BLE001
                    raise with_path(exc, f"'{name}'") from exc
            except Exception as exc:  # noqa: BLE001
                raise with_path(_suffix(exc, value.details_string()), path) from exc


def _suffix(exc: BaseException, suffix: str) -> BaseException:
    if not suffix:
        return exc
    if isinstance(exc, AssertionFailure):
        exc.message = f"{exc.message}{suffix}"
        return exc
    wrapped = AssertionFailure(f"{exc}{suffix}")
    wrapped.__cause__ = exc
    return wrapped


class Expect(SchemaModel, AssertionBuilder):
    code: Any = None
    status: ExpectStatus = Field(default_factory=ExpectStatus)
    header: Optional[OrderedMap] = Field(default=None, validation_alias=AliasChoices("header", "metadata"))
    trailer: Optional[OrderedMap] = None
    message: Any = None

    def build(self, ctx: "Context") -> Assertion:
        code_path = "code"
        expect_code: Any = "OK"
        if self.code not in (None, ""):
            expect_code = self.code
        if self.status.code not in (None, ""):
            code_path = "status.code"
            expect_code = self.status.code
        if isinstance(expect_code, int) and not isinstance(expect_code, bool):
            expect_code = str(expect_code)
        try:
            code_assertion = build(expect_code, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect response"), code_path) from exc

        message_assertion = None
        if self.status.message not in (None, ""):
            try:
                message_assertion = build(self.status.message, ctx)
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "invalid expect response"), "status.message") from exc

        details = []
        for i, detail in enumerate(self.status.details or []):
            if len(detail) != 1:
                raise error_path(
                    f"status.details[{i}]",
                    "an element of status.details list must be a map of size 1 with the detail message name "
                    "as the key and the value as the detail message object",
                    CompileError,
                )
            name, fields = next(iter(detail.items()))
            try:
                details.append((name, build(name, ctx), build(fields, ctx)))
            except Exception as exc:  # noqa: BLE001
                raise with_path(wrap(exc, "failed to execute template"), f"status.details[{i}].'{name}'") from exc

        try:
            header_assertion = build_header_assertion(self.header, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect header"), "header") from exc
        try:
            trailer_assertion = build_header_assertion(self.trailer, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect trailer"), "trailer") from exc
        try:
            body_assertion = build(self.message, ctx)
        except Exception as exc:  # noqa: BLE001
            raise with_path(wrap(exc, "invalid expect response"), "message") from exc

        return ResponseAssertion(
            code_path,
            code_assertion,
            message_assertion,
            details,
            header_assertion,
            trailer_assertion,
            body_assertion,
        )


class GRPC(Protocol):
    name = "grpc"

    def unmarshal_request(self, value: Any) -> Request:
        return Request.model_validate(value if value is not None else {})

    def unmarshal_expect(self, value: Any) -> Expect:
        return Expect.model_validate(value if value is not None else {})

