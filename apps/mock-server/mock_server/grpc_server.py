"""gRPC mock server dispatching every unary method of the loaded protos."""

from __future__ import annotations

from concurrent import futures
from typing import Any, Callable, Optional

import grpc
import structlog
from google.protobuf import descriptor_pool
from grpc_health.v1 import health, health_pb2, health_pb2_grpc
from grpc_reflection.v1alpha import reflection
from pydantic import Field, ValidationError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_delay, stop_never, wait_fixed

from test_executor.assertion.builder import AllOf, PathAssertion, build, build_header_assertion
from test_executor.context import Context
from test_executor.errors import (
    CancelledError,
    MockViolation,
    MultiPathError,
    PathError,
    error_path,
    with_path,
    wrap,
)
from test_executor.ordered_map import OrderedMap
from test_executor.protocol.grpc_codes import code_name, parse_code
from test_executor.protocol.grpc_proto import Metadata, ProtoSet, load_protos, message_class, message_to_map, new_message
from test_executor.protocol.grpc_protocol import ProtoOptions
from test_executor.schema import SchemaModel

from .iterator import MockIterator
from .protocol import MockProtocol, Server, ServerClosedError

LOGGER = structlog.get_logger("mock-server")

POLL_INTERVAL = 0.1
MAX_WORKERS = 10
# seconds in-flight calls may take to finish when stopping
STOP_GRACE_PERIOD = 5.0


class GRPCServerConfig(SchemaModel):
    host: str = "127.0.0.1"
    port: int = 0
    proto: ProtoOptions = Field(default_factory=ProtoOptions)


class GRPCMockExpect(SchemaModel):
    service: Optional[str] = None
    method: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    message: Any = None


class MockStatus(SchemaModel):
    code: Any = None
    message: str = ""


class GRPCMockResponse(SchemaModel):
    status: Optional[MockStatus] = None
    message: Any = None


class _Abort(Exception):
    def __init__(self, code: grpc.StatusCode, details: str) -> None:
        super().__init__(details)
        self.code = code
        self.details = details


class _NotServing(Exception):
    pass


def handle_call(
    iterator: MockIterator,
    service: str,
    method: Any,
    request_message: Any,
    metadata: Metadata,
) -> Any:
    """Consume one mock for a unary call and return the response message.

    Raises :class:`_Abort` with the status the client should receive.
    """

    try:
        mock = iterator.next()
    except MockViolation as exc:
        raise _Abort(grpc.StatusCode.INTERNAL, f"failed to get mock: {exc}") from exc
    if mock.protocol.lower() != "grpc":
        err = error_path("protocol", f'received gRPC request but the mock protocol is "{mock.protocol}"', MockViolation)
        raise _Abort(grpc.StatusCode.INTERNAL, str(err))

    try:
        expect = GRPCMockExpect.model_validate(mock.expect or {})
    except ValidationError as exc:
        raise _Abort(grpc.StatusCode.INTERNAL, str(error_path("expect", f"failed to unmarshal: {exc}"))) from exc
    ctx = Context()
    expects = OrderedMap()
    for key in ("service", "method"):
        if getattr(expect, key) is not None:
            expects[key] = getattr(expect, key)
    if expect.message is not None:
        expects["message"] = expect.message
    try:
        metadata_assertion = build_header_assertion(expect.metadata, ctx)
        assertion = AllOf([build(expects, ctx), PathAssertion(["metadata"], metadata_assertion)])
    except Exception as exc:  # noqa: BLE001
        raise _Abort(grpc.StatusCode.INTERNAL, str(with_path(exc, "expect"))) from exc

    request = OrderedMap(
        [
            ("service", service),
            ("method", method.name),
            ("metadata", metadata),
            ("message", message_to_map(request_message)),
        ]
    )
    try:
        assertion.assert_value(request)
    except (PathError, MultiPathError) as exc:
        err = with_path(wrap(exc, "request assertion failed"), "expect")
        raise _Abort(grpc.StatusCode.INVALID_ARGUMENT, str(err)) from exc

    ctx = ctx.with_request(request)
    try:
        response = GRPCMockResponse.model_validate(ctx.execute_template(mock.response) or {})
    except Exception as exc:  # noqa: BLE001
        err = with_path(wrap(exc, "failed to build response"), "response")
        raise _Abort(grpc.StatusCode.INTERNAL, str(err)) from exc

    if response.status is not None and response.status.code not in (None, ""):
        try:
            code = parse_code(response.status.code)
        except ValueError as exc:
            raise _Abort(grpc.StatusCode.INTERNAL, str(error_path("response.status.code", str(exc)))) from exc
        if code != grpc.StatusCode.OK:
            raise _Abort(code, response.status.message or code_name(code))

    try:
        return new_message(method.output_type, response.message)
    except ValueError as exc:
        raise _Abort(grpc.StatusCode.INTERNAL, str(error_path("response.message", str(exc)))) from exc


class GRPCMockServer(Server):
    def __init__(self, iterator: MockIterator, config: GRPCServerConfig, protos: ProtoSet) -> None:
        self._iterator = iterator
        self._config = config
        self._protos = protos
        self._server: Optional[grpc.Server] = None
        self._port = 0
        self._logger = LOGGER.bind(protocol="grpc")

    def start(self) -> None:
        server = grpc.server(futures.ThreadPoolExecutor(max_workers=MAX_WORKERS))
        for service_name in self._protos.services:
            server.add_generic_rpc_handlers((self._service_handler(service_name),))

        health_servicer = health.HealthServicer()
        health_pb2_grpc.add_HealthServicer_to_server(health_servicer, server)
        health_servicer.set("", health_pb2.HealthCheckResponse.SERVING)
        reflection.enable_server_reflection(
            (*self._protos.services, reflection.SERVICE_NAME),
            server,
            pool=self._protos.pool,
        )

        self._port = server.add_insecure_port(f"{self._config.host}:{self._config.port}")
        server.start()
        self._server = server
        self._logger = self._logger.bind(host=self._config.host, port=self._port)
        self._logger.info("server_started", services=self._protos.services)

    def _service_handler(self, service_name: str) -> grpc.GenericRpcHandler:
        service = self._protos.pool.FindServiceByName(service_name)
        handlers = {}
        for method in service.methods:
            if getattr(method, "client_streaming", False) or getattr(method, "server_streaming", False):
                self._logger.warning("streaming_method_skipped", method=method.full_name)
                continue
            handlers[method.name] = grpc.unary_unary_rpc_method_handler(
                self._unary_handler(service.full_name, method),
                request_deserializer=message_class(method.input_type).FromString,
                response_serializer=lambda msg: msg.SerializeToString(),
            )
        return grpc.method_handlers_generic_handler(service.full_name, handlers)

    def _unary_handler(self, service: str, method: Any) -> Callable[[Any, grpc.ServicerContext], Any]:
        iterator = self._iterator
        call_logger = self._logger.bind(method=f"/{service}/{method.name}")

        def handle(request: Any, context: grpc.ServicerContext) -> Any:
            metadata = Metadata.from_pairs((item.key, item.value) for item in context.invocation_metadata())
            try:
                response = handle_call(iterator, service, method, request, metadata)
            except _Abort as exc:
                call_logger.error("mock_violation", code=code_name(exc.code), error=exc.details)
                context.abort(exc.code, exc.details)
            call_logger.info("mock_consumed")
            return response

        return handle

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._server is None:
            raise ServerClosedError()
        retrying = Retrying(
            stop=stop_never if timeout is None else stop_after_delay(timeout),
            wait=wait_fixed(POLL_INTERVAL),
            retry=retry_if_exception_type((grpc.RpcError, _NotServing)),
        )
        with grpc.insecure_channel(self.addr()) as channel:
            stub = health_pb2_grpc.HealthStub(channel)
            try:
                retrying(_check_health, stub)
            except RetryError as exc:
                raise CancelledError(f"grpc mock server is not ready: {exc.last_attempt.exception()}") from exc

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._server is None:
            raise ServerClosedError()
        server, self._server = self._server, None
        server.stop(STOP_GRACE_PERIOD if timeout is None else timeout).wait()
        self._logger.info("server_stopped")

    def addr(self) -> str:
        if self._server is None:
            return ""
        return f"{self._config.host}:{self._port}"


def _check_health(stub: health_pb2_grpc.HealthStub) -> None:
    response = stub.Check(health_pb2.HealthCheckRequest(), timeout=1)
    if response.status != health_pb2.HealthCheckResponse.SERVING:
        raise _NotServing(health_pb2.HealthCheckResponse.ServingStatus.Name(response.status))


class GRPCMockProtocol(MockProtocol):
    name = "grpc"

    def unmarshal_config(self, value: Any) -> GRPCServerConfig:
        return GRPCServerConfig.model_validate(value or {})

    def new_server(self, iterator: MockIterator, config: GRPCServerConfig) -> GRPCMockServer:
        if config.proto.files:
            protos = load_protos(config.proto.files, config.proto.imports)
        else:
            protos = ProtoSet(descriptor_pool.DescriptorPool(), ())
        return GRPCMockServer(iterator, config, protos)
