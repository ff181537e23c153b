"""Dynamic protobuf support for the gRPC protocol and the gRPC mock server.

Services are described either by ``.proto`` files compiled with
``grpc_tools.protoc`` into a descriptor set, or by the server reflection
service of the target. Messages are converted to and from
:class:`~test_executor.ordered_map.OrderedMap` trees so templates and
assertions can address their fields by proto field name.
"""

from __future__ import annotations

import base64
import tempfile
import threading
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Optional

import grpc
import structlog
from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.descriptor import FieldDescriptor, MethodDescriptor
from grpc_reflection.v1alpha.proto_reflection_descriptor_database import ProtoReflectionDescriptorDatabase
from grpc_tools import protoc

from ..errors import CompileError
from ..ordered_map import OrderedMap, to_builtin

LOGGER = structlog.get_logger("test-executor")


class ProtoSet:
    """A descriptor pool plus the full names of the services it defines."""

    def __init__(self, pool: descriptor_pool.DescriptorPool, services: Iterable[str]) -> None:
        self.pool = pool
        self.services = list(services)

    def find_method(self, full_method: str) -> MethodDescriptor:
        service_name, method_name = split_method(full_method)
        try:
            service = self.pool.FindServiceByName(service_name)
        except KeyError as exc:
            raise CompileError(f'service "{service_name}" not found') from exc
        method = service.methods_by_name.get(method_name)
        if method is None:
            raise CompileError(f'method "{method_name}" not found in service "{service_name}"')
        return method


def split_method(full_method: str) -> tuple[str, str]:
    """Split ``pkg.Service/Method`` (an optional leading ``/`` is allowed)."""

    service, sep, method = full_method.lstrip("/").rpartition("/")
    if not sep or not service or not method:
        raise CompileError(f'invalid method "{full_method}": expected "<package>.<Service>/<Method>"')
    return service, method


def _include_dir() -> str:
    return str(resources.files("grpc_tools") / "_proto")


def compile_protos(files: Iterable[str], imports: Iterable[str] = ()) -> ProtoSet:
    """Compile ``files`` with protoc and load the resulting descriptor set."""

    files = [str(f) for f in files]
    if not files:
        raise CompileError("no proto files specified")
    import_dirs = [str(Path(p).resolve()) for p in imports]
    for name in files:
        path = Path(name)
        if path.is_absolute() and not any(path.is_relative_to(d) for d in import_dirs):
            import_dirs.append(str(path.parent))
    if not import_dirs:
        import_dirs.append(str(Path.cwd()))

    with tempfile.TemporaryDirectory() as tmp:
        out = Path(tmp) / "descriptor.pb"
        args = ["grpc_tools.protoc", f"--proto_path={_include_dir()}"]
        args.extend(f"--proto_path={d}" for d in import_dirs)
        args.extend([f"--descriptor_set_out={out}", "--include_imports", *files])
        if protoc.main(args) != 0 or not out.exists():
            raise CompileError(f"failed to compile proto files: {', '.join(files)}")
        descriptor_set = descriptor_pb2.FileDescriptorSet.FromString(out.read_bytes())

    pool = descriptor_pool.DescriptorPool()
    services = []
    for file_proto in descriptor_set.file:
        pool.AddSerializedFile(file_proto.SerializeToString())
    requested = {Path(f).name for f in files}
    for file_proto in descriptor_set.file:
        if Path(file_proto.name).name not in requested:
            continue
        prefix = f"{file_proto.package}." if file_proto.package else ""
        services.extend(prefix + service.name for service in file_proto.service)
    LOGGER.debug("proto_compiled", files=files, services=services)
    return ProtoSet(pool, services)


_cache_lock = threading.Lock()
_compiled: dict[tuple[tuple[str, ...], tuple[str, ...]], ProtoSet] = {}


def load_protos(files: Iterable[str], imports: Iterable[str] = ()) -> ProtoSet:
    """Compile once per distinct set of files and import paths."""

    key = (tuple(str(f) for f in files), tuple(str(p) for p in imports))
    with _cache_lock:
        if key not in _compiled:
            _compiled[key] = compile_protos(key[0], key[1])
        return _compiled[key]


def reflection_protos(channel: grpc.Channel) -> ProtoSet:
    """Resolve descriptors lazily through the server reflection service.

    Nothing is requested until a service is looked up, so ``services`` is empty.
    """

    database = ProtoReflectionDescriptorDatabase(channel)
    return ProtoSet(descriptor_pool.DescriptorPool(database), ())


def message_class(descriptor: Any) -> type:
    return message_factory.GetMessageClass(descriptor)


def new_message(descriptor: Any, value: Any) -> Any:
    """Build a message of type ``descriptor`` from a mapping of field values."""

    msg = message_class(descriptor)()
    if value is None:
        return msg
    try:
        json_format.ParseDict(_bytes_to_base64(to_builtin(value)), msg)
    except json_format.ParseError as exc:
        raise ValueError(f"failed to build {descriptor.full_name} message: {exc}") from exc
    return msg


def _bytes_to_base64(value: Any) -> Any:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, dict):
        return {key: _bytes_to_base64(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_bytes_to_base64(item) for item in value]
    return value


def message_to_map(msg: Any) -> OrderedMap:
    """Convert ``msg`` into an ordered map keyed by proto field name.

    Every declared field is present; unset message fields are ``None`` and
    enums are rendered by value name.
    """

    result = OrderedMap()
    for field in msg.DESCRIPTOR.fields:
        result[field.name] = _field_value(msg, field)
    return result


def _field_value(msg: Any, field: FieldDescriptor) -> Any:
    value = getattr(msg, field.name)
    if _is_map(field):
        value_field = field.message_type.fields_by_name["value"]
        result = OrderedMap()
        for key in sorted(value):
            result[key] = _scalar(value[key], value_field)
        return result
    if _is_repeated(field):
        return [_scalar(item, field) for item in value]
    if field.type == FieldDescriptor.TYPE_MESSAGE and not msg.HasField(field.name):
        return None
    return _scalar(value, field)


def _scalar(value: Any, field: FieldDescriptor) -> Any:
    if field.type == FieldDescriptor.TYPE_MESSAGE:
        return message_to_map(value)
    if field.type == FieldDescriptor.TYPE_ENUM:
        enum_value = field.enum_type.values_by_number.get(value)
        return enum_value.name if enum_value is not None else value
    return value


def _is_map(field: FieldDescriptor) -> bool:
    return (
        field.type == FieldDescriptor.TYPE_MESSAGE
        and field.message_type.GetOptions().map_entry
        and _is_repeated(field)
    )


def _is_repeated(field: FieldDescriptor) -> bool:
    if hasattr(field, "is_repeated"):
        return field.is_repeated
    return field.label == FieldDescriptor.LABEL_REPEATED


class Metadata(OrderedMap):
    """gRPC metadata; keys are lower case and values are lists."""

    def add(self, key: str, value: Any) -> None:
        key = key.lower()
        if key in self:
            self[key].append(value)
        else:
            self[key] = [value]

    def extract_by_key(self, key: Any) -> tuple[Any, bool]:
        if not isinstance(key, str):
            return None, False
        return super().extract_by_key(key.lower())

    @classmethod
    def from_pairs(cls, pairs: Optional[Iterable[Any]]) -> "Metadata":
        metadata = cls()
        for key, value in pairs or ():
            metadata.add(key, value)
        return metadata
