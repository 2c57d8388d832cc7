"""JSON-RPC protocol helpers and constants.

Contains the JsonRpcError exception, standard error codes, the request
envelope type, and response/notification formatting functions. Frames on
the wire are single JSON objects terminated by a newline.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

JSONRPC_VERSION = "2.0"
FRAME_DELIMITER = b"\n"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Implementation-defined server error: the handler raised or timed out
HANDLER_ERROR = -32000

RequestId = str | int | float | None


class JsonRpcError(Exception):
    """JSON-RPC error with code and data.

    Handlers raise this to answer with a specific error code instead of the
    generic handler failure.
    """

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass(frozen=True)
class RPCRequest:
    """A validated JSON-RPC 2.0 request."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: RequestId = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


def is_valid_id(value: Any) -> bool:
    """Whether ``value`` may be echoed back as a response id."""
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        # NaN and overflowed literals such as 1e400 cannot be written back
        return math.isfinite(value)
    return value is None or isinstance(value, (str, int))


def success_response(request_id: RequestId, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC success response."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "result": result,
    }


def error_response(
    request_id: RequestId,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Build a JSON-RPC error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data

    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error,
    }


def notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC notification (a message without an id)."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params or {},
    }


def encode_frame(message: dict[str, Any]) -> bytes:
    """Serialize one envelope into a newline-terminated frame.

    Non-ASCII characters are written as ``\\uXXXX`` escapes, so any string
    that came off the wire, lone surrogates included, goes back out intact.

    Raises:
        TypeError, ValueError, RecursionError: If the message is not JSON
            serializable.
    """
    payload = json.dumps(message, ensure_ascii=True, allow_nan=False, separators=(",", ":"))
    return payload.encode("ascii") + FRAME_DELIMITER
