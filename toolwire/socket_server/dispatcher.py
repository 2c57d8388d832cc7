"""Request validation and handler dispatch.

The Dispatcher is the single boundary between raw messages and handler
code: every message it is given yields exactly one response envelope, and
no handler failure escapes it.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from toolwire.errors import ErrorCode, RegistrationError
from toolwire.observability.logging import log_event
from toolwire.socket_server.protocol import (
    HANDLER_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcError,
    RequestId,
    RPCRequest,
    error_response,
    is_valid_id,
    success_response,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]


class _HandlerTimeout(Exception):
    """The handler outlived handler_timeout."""


class ParamSchema(BaseModel):
    """Declared parameters of a handler.

    Accepts a JSON-schema style object; only ``required`` is enforced by the
    dispatcher, ``properties`` is published for clients.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: Literal["object"] = "object"
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def first_missing(self, params: dict[str, Any]) -> str | None:
        """Return the first required key absent from ``params``, in declared order."""
        for key in self.required:
            if key not in params:
                return key
        return None


@dataclass(frozen=True)
class HandlerDescriptor:
    """A registered method: its name, callable, and parameter schema."""

    name: str
    handler: Handler
    schema: ParamSchema | None = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "schema": self.schema.model_dump() if self.schema else None,
        }


class HandlerRegistry:
    """Explicit mapping from method name to handler descriptor.

    Built once at startup. Lookups are exact key matches, so names such as
    ``__class__`` or ``get`` never resolve to anything that was not
    registered.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerDescriptor] = {}

    def register(
        self,
        name: str,
        handler: Handler,
        schema: ParamSchema | dict[str, Any] | None = None,
        description: str = "",
    ) -> HandlerDescriptor:
        """Register ``handler`` under ``name``.

        Raises:
            RegistrationError: If the name is empty, already taken, or the
                handler is not callable.
        """
        if not isinstance(name, str) or not name:
            raise RegistrationError("Method name must be a non-empty string", method=str(name))
        if name in self._handlers:
            raise RegistrationError(
                f"Method already registered: {name}",
                method=name,
                code=ErrorCode.REG_DUPLICATE,
            )
        if not callable(handler):
            raise RegistrationError(f"Handler for {name} is not callable", method=name)

        if isinstance(schema, dict):
            schema = ParamSchema.model_validate(schema)

        descriptor = HandlerDescriptor(
            name=name, handler=handler, schema=schema, description=description
        )
        self._handlers[name] = descriptor
        return descriptor

    def get(self, name: str) -> HandlerDescriptor | None:
        return self._handlers.get(name)

    def names(self) -> list[str]:
        return list(self._handlers)

    def describe(self) -> list[dict[str, Any]]:
        return [descriptor.to_dict() for descriptor in self._handlers.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[HandlerDescriptor]:
        return iter(list(self._handlers.values()))

    def __len__(self) -> int:
        return len(self._handlers)


class Dispatcher:
    """Validates JSON-RPC messages and routes them to registered handlers.

    Args:
        handlers: Registry of callable methods. Referenced, not copied, so
            methods registered later are visible.
        handler_timeout: Seconds a handler may run before it is failed with
            a handler error. ``None`` disables the limit.

    Example:
        handlers = HandlerRegistry()
        handlers.register("echo", lambda params: params, {"required": ["text"]})
        response = await Dispatcher(handlers).dispatch(b'{"jsonrpc": "2.0", ...}')
    """

    def __init__(self, handlers: HandlerRegistry, handler_timeout: float | None = None) -> None:
        self._handlers = handlers
        self._handler_timeout = handler_timeout

    @property
    def handlers(self) -> HandlerRegistry:
        return self._handlers

    async def dispatch(self, message: str | bytes) -> dict[str, Any]:
        """Produce the response envelope for one framed message."""
        try:
            data = json.loads(message)
        except RecursionError:
            return error_response(None, PARSE_ERROR, "Parse error: nesting too deep")
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            return error_response(None, PARSE_ERROR, f"Parse error: {e}")

        request = self._validate(data)
        if not isinstance(request, RPCRequest):
            return request

        descriptor = self._handlers.get(request.method)
        if descriptor is None:
            logger.debug(f"Method not found: {request.method}")
            return error_response(
                request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}"
            )

        if descriptor.schema is not None:
            missing = descriptor.schema.first_missing(request.params)
            if missing is not None:
                return error_response(
                    request.id,
                    INVALID_PARAMS,
                    f"Invalid params: missing required parameter '{missing}'",
                )

        return await self._invoke(descriptor, request)

    def _validate(self, data: Any) -> RPCRequest | dict[str, Any]:
        """Check the envelope; return the request or an error response."""
        if not isinstance(data, dict):
            return error_response(None, INVALID_REQUEST, "Invalid request: expected an object")

        raw_id = data.get("id")
        if not is_valid_id(raw_id):
            return error_response(
                None,
                INVALID_REQUEST,
                "Invalid request: id must be a string, number, or null",
            )
        request_id: RequestId = raw_id

        version = data.get("jsonrpc")
        if version is None:
            return error_response(
                request_id, INVALID_REQUEST, "Invalid request: missing jsonrpc version"
            )
        if version != JSONRPC_VERSION:
            return error_response(
                request_id,
                INVALID_REQUEST,
                f"Invalid request: unsupported jsonrpc version {version!r}",
            )

        method = data.get("method")
        if not isinstance(method, str) or not method:
            return error_response(request_id, INVALID_REQUEST, "Invalid request: missing method")

        params = data.get("params")
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            return error_response(
                request_id, INVALID_PARAMS, "Invalid params: params must be an object"
            )

        return RPCRequest(method=method, params=params, id=request_id)

    async def _invoke(self, descriptor: HandlerDescriptor, request: RPCRequest) -> dict[str, Any]:
        start = time.perf_counter()
        try:
            result = await self._call(descriptor, request.params)
        except asyncio.CancelledError:
            raise
        except JsonRpcError as e:
            log_event(
                logger,
                "rpc.error",
                level=logging.DEBUG,
                method=descriptor.name,
                error_code=e.code,
                error_message=e.message,
            )
            return error_response(request.id, e.code, e.message, e.data)
        except _HandlerTimeout:
            message = f"Handler '{descriptor.name}' timed out after {self._handler_timeout}s"
            log_event(
                logger,
                "rpc.handler_error",
                level=logging.ERROR,
                message=message,
                method=descriptor.name,
                error_message=message,
            )
            return error_response(request.id, HANDLER_ERROR, message)
        except Exception as e:
            message = str(e) or type(e).__name__
            log_event(
                logger,
                "rpc.handler_error",
                level=logging.ERROR,
                message=f"Handler '{descriptor.name}' failed: {message}",
                method=descriptor.name,
                error_message=message,
                error_type=type(e).__name__,
            )
            return error_response(request.id, HANDLER_ERROR, message)

        log_event(
            logger,
            "rpc.complete",
            level=logging.DEBUG,
            method=descriptor.name,
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return success_response(request.id, result)

    async def _call(self, descriptor: HandlerDescriptor, params: dict[str, Any]) -> Any:
        outcome = descriptor.handler(params)
        if not inspect.isawaitable(outcome):
            return outcome
        if self._handler_timeout is None:
            return await outcome
        try:
            async with asyncio.timeout(self._handler_timeout) as scope:
                return await outcome
        except TimeoutError as e:
            # A TimeoutError the handler raised itself is an ordinary failure
            if scope.expired():
                raise _HandlerTimeout from e
            raise
