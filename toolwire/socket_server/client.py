"""Async client for the toolwire socket server.

Sends newline-delimited JSON-RPC requests and matches responses to them by
id, since the server answers in completion order. Frames without an id
(server notifications) are queued on ``notifications``.

Example:
    async with ToolClient("127.0.0.1", 13378) as client:
        result = await client.call("echo", {"text": "hi"})
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

from toolwire.socket_server.framing import StreamFramer
from toolwire.socket_server.protocol import (
    INTERNAL_ERROR,
    JsonRpcError,
    RPCRequest,
    encode_frame,
)

logger = logging.getLogger(__name__)


class ToolClient:
    """JSON-RPC client over a single TCP connection."""

    def __init__(self, host: str = "127.0.0.1", port: int = 13378, timeout: float = 30.0) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._pending: dict[Any, asyncio.Future[dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.notifications: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def connect(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(self._host, self._port)
        self._read_task = asyncio.create_task(self._read_loop())
        logger.debug(f"Connected to {self._host}:{self._port}")

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._writer = None
        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

    async def __aenter__(self) -> ToolClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def request(
        self, method: str, params: dict[str, Any] | None = None, request_id: Any = None
    ) -> dict[str, Any]:
        """Send a request and return the raw response envelope."""
        if self._writer is None:
            raise ConnectionError("Not connected to server")

        if request_id is None:
            request_id = next(self._ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        request = RPCRequest(method=method, params=params or {}, id=request_id)
        try:
            self._writer.write(encode_frame(request.to_dict()))
            await self._writer.drain()
            return await asyncio.wait_for(future, timeout=self._timeout)
        finally:
            self._pending.pop(request_id, None)

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and return its result.

        Raises:
            JsonRpcError: If the server answers with an error.
        """
        response = await self.request(method, params)
        if "error" in response:
            error = response["error"]
            raise JsonRpcError(
                error.get("code", INTERNAL_ERROR),
                error.get("message", "Unknown error"),
                error.get("data"),
            )
        return response.get("result")

    async def send_raw(self, data: bytes) -> None:
        """Write bytes to the socket unmodified."""
        if self._writer is None:
            raise ConnectionError("Not connected to server")
        self._writer.write(data)
        await self._writer.drain()

    async def _read_loop(self) -> None:
        assert self._reader is not None
        framer = StreamFramer()
        try:
            while True:
                chunk = await self._reader.read(64 * 1024)
                if not chunk:
                    break
                for frame in framer.feed(chunk):
                    self._route(frame)
        except (ConnectionError, OSError) as e:
            logger.debug(f"Client connection error: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionError("Connection closed"))

    def _route(self, frame: bytes) -> None:
        try:
            message = json.loads(frame)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unparseable frame from server: {e}")
            return
        if not isinstance(message, dict):
            return

        if "id" not in message:
            self.notifications.put_nowait(message)
            return

        future = self._pending.get(message["id"])
        if future is not None and not future.done():
            future.set_result(message)
        else:
            logger.debug(f"Response for unknown request id {message['id']!r}")
