"""toolwire socket server package.

JSON-RPC 2.0 over newline-delimited TCP frames.

Submodules:
    protocol   - JSON-RPC protocol helpers and constants
    framing    - Newline framing of the raw byte stream
    registry   - Live connection tracking and lifecycle events
    dispatcher - Envelope validation and handler dispatch
    server     - ToolSocketServer and the run loop
    tools      - Built-in tool handlers
    client     - Async client used by the CLI and tests
"""

from toolwire.socket_server.dispatcher import (
    Dispatcher,
    HandlerDescriptor,
    HandlerRegistry,
    ParamSchema,
)
from toolwire.socket_server.framing import StreamFramer
from toolwire.socket_server.protocol import (
    HANDLER_ERROR,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcError,
    RPCRequest,
)
from toolwire.socket_server.registry import (
    Connection,
    ConnectionEvent,
    ConnectionInfo,
    ConnectionRegistry,
)
from toolwire.socket_server.server import ToolSocketServer, run_server

__all__ = [
    # Server
    "ToolSocketServer",
    "run_server",
    # Dispatch
    "Dispatcher",
    "HandlerDescriptor",
    "HandlerRegistry",
    "ParamSchema",
    # Transport
    "StreamFramer",
    "Connection",
    "ConnectionEvent",
    "ConnectionInfo",
    "ConnectionRegistry",
    # Protocol
    "JsonRpcError",
    "RPCRequest",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "HANDLER_ERROR",
]
