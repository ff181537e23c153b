"""gRPC status code names as they appear in scenarios and mock configs."""

from __future__ import annotations

from typing import Any

import grpc

from ..template.functions import type_name

CODE_NAMES = {
    grpc.StatusCode.OK: "OK",
    grpc.StatusCode.CANCELLED: "Canceled",
    grpc.StatusCode.UNKNOWN: "Unknown",
    grpc.StatusCode.INVALID_ARGUMENT: "InvalidArgument",
    grpc.StatusCode.DEADLINE_EXCEEDED: "DeadlineExceeded",
    grpc.StatusCode.NOT_FOUND: "NotFound",
    grpc.StatusCode.ALREADY_EXISTS: "AlreadyExists",
    grpc.StatusCode.PERMISSION_DENIED: "PermissionDenied",
    grpc.StatusCode.RESOURCE_EXHAUSTED: "ResourceExhausted",
    grpc.StatusCode.FAILED_PRECONDITION: "FailedPrecondition",
    grpc.StatusCode.ABORTED: "Aborted",
    grpc.StatusCode.OUT_OF_RANGE: "OutOfRange",
    grpc.StatusCode.UNIMPLEMENTED: "Unimplemented",
    grpc.StatusCode.INTERNAL: "Internal",
    grpc.StatusCode.UNAVAILABLE: "Unavailable",
    grpc.StatusCode.DATA_LOSS: "DataLoss",
    grpc.StatusCode.UNAUTHENTICATED: "Unauthenticated",
}

_BY_NAME = {name: code for code, name in CODE_NAMES.items()}
_BY_NAME.update({code.name: code for code in CODE_NAMES})
_BY_NUMBER = {code.value[0]: code for code in CODE_NAMES}

MAX_CODE = 2**32 - 1


def code_name(code: grpc.StatusCode) -> str:
    return CODE_NAMES.get(code, code.name)


def code_number(code: grpc.StatusCode) -> int:
    return code.value[0]


def parse_code(value: Any) -> grpc.StatusCode:
    """Parse a status code given by name (``NotFound``, ``NOT_FOUND``) or number.

    Numbers without a matching :class:`grpc.StatusCode` map to ``UNKNOWN``.
    """

    if isinstance(value, grpc.StatusCode):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid status code: expected string or integer but got {type_name(value)}")
    if isinstance(value, int):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValueError(f"invalid status code: expected string or integer but got {type_name(value)}")
    if text in _BY_NAME:
        return _BY_NAME[text]
    if text.isdigit():
        number = int(text)
        if number > MAX_CODE:
            raise ValueError(f'invalid status code "{text}"')
        return _BY_NUMBER.get(number, grpc.StatusCode.UNKNOWN)
    raise ValueError(f'invalid status code "{text}"')
