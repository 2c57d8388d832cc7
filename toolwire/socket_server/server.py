"""toolwire socket server.

JSON-RPC server over TCP for tool clients.

Protocol: JSON-RPC 2.0 over newline-delimited JSON. Each request is
dispatched in its own task, so responses are written in the order handlers
complete and clients must correlate them by id. On connect the server may
push a ``connection.accepted`` notification, which carries no id.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Coroutine
from typing import Any

from toolwire import __version__
from toolwire.config import DEFAULT_MAX_MESSAGE_SIZE, DEFAULT_PORT, ServerConfig
from toolwire.errors import ServerStartupError
from toolwire.observability.logging import log_event, timed_operation
from toolwire.socket_server.dispatcher import Dispatcher, HandlerRegistry
from toolwire.socket_server.framing import StreamFramer
from toolwire.socket_server.protocol import (
    HANDLER_ERROR,
    INVALID_REQUEST,
    encode_frame,
    error_response,
    is_valid_id,
    notification,
)
from toolwire.socket_server.registry import ConnectionEvent, ConnectionInfo, ConnectionRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "toolwire"
DEFAULT_HOST = "127.0.0.1"
READ_CHUNK_SIZE = 64 * 1024


class ToolSocketServer:
    """JSON-RPC tool server over TCP.

    Owns the listening socket. Every accepted connection is registered in
    the ConnectionRegistry, gets its own StreamFramer, and has each framed
    message routed through the Dispatcher.

    Example:
        handlers = HandlerRegistry()
        handlers.register("echo", handle_echo, {"required": ["text"]})
        server = ToolSocketServer(handlers, ConnectionRegistry(), port=13378)
        await server.start()
        ...
        await server.shutdown()
    """

    def __init__(
        self,
        handlers: HandlerRegistry,
        connections: ConnectionRegistry,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        max_message_size: int | None = DEFAULT_MAX_MESSAGE_SIZE,
        handler_timeout: float | None = None,
        shutdown_grace: float = 5.0,
        send_greeting: bool = True,
    ) -> None:
        self._handlers = handlers
        self._connections = connections
        self._dispatcher = Dispatcher(handlers, handler_timeout=handler_timeout)
        self._host = host
        self._port = port
        self._max_message_size = max_message_size
        self._shutdown_grace = shutdown_grace
        self._send_greeting = send_greeting
        self._server: asyncio.Server | None = None
        self._running = False
        self._closed = asyncio.Event()
        self._inflight: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        handlers: HandlerRegistry,
        connections: ConnectionRegistry,
    ) -> ToolSocketServer:
        """Build a server from the ``server`` section of the configuration."""
        return cls(
            handlers,
            connections,
            host=config.host,
            port=config.port,
            max_message_size=config.max_message_size,
            handler_timeout=config.handler_timeout,
            shutdown_grace=config.shutdown_grace,
            send_greeting=config.send_greeting,
        )

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Bind the listening socket and start accepting connections.

        Raises:
            ServerStartupError: If the socket cannot be bound (e.g. the port
                is already in use). The server is left stopped.
        """
        if self._server is not None:
            return

        try:
            self._server = await asyncio.start_server(
                self._handle_client,
                host=self._host,
                port=self._port,
            )
        except OSError as e:
            log_event(
                logger,
                "server.start_failed",
                level=logging.ERROR,
                message=f"Cannot listen on {self._host}:{self._port}: {e}",
                host=self._host,
                port=self._port,
                error_message=str(e),
            )
            raise ServerStartupError(
                f"Cannot listen on {self._host}:{self._port}: {e.strerror or e}",
                host=self._host,
                port=self._port,
                cause=e,
            ) from e

        if self._server.sockets:
            self._port = int(self._server.sockets[0].getsockname()[1])
        self._running = True
        self._closed.clear()
        log_event(logger, "server.start", host=self._host, port=self.port)

    async def serve_forever(self) -> None:
        """Start if needed, then serve until ``shutdown()`` completes."""
        await self.start()
        await self._closed.wait()

    async def shutdown(self) -> None:
        """Stop accepting, flush in-flight requests, close every socket.

        Returns only after the listening socket is fully closed. Safe to call
        more than once.
        """
        server = self._server
        if server is None:
            return
        self._server = None
        self._running = False

        with timed_operation(logger, "server.shutdown", port=self._port):
            server.close()

            if self._inflight and self._shutdown_grace > 0:
                await asyncio.wait(set(self._inflight), timeout=self._shutdown_grace)

            for _, writer in self._connections.handles():
                self._close_writer(writer)

            pending = [task for task in self._inflight if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            await server.wait_closed()

        self._closed.set()
        log_event(logger, "server.stop", port=self._port)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """Listening port; once started, the bound one even if 0 was configured."""
        return self._port

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def handlers(self) -> HandlerRegistry:
        return self._handlers

    # ========== Outbound ==========

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send ``message`` to every registered connection.

        The message is serialized once. A failure on one socket is logged and
        does not stop delivery to the others.

        Returns:
            Number of connections the frame was written to.
        """
        frame = encode_frame(message)
        delivered = 0
        for conn_id, writer in self._connections.handles():
            try:
                writer.write(frame)
                await writer.drain()
                delivered += 1
            except Exception as e:
                log_event(
                    logger,
                    "broadcast.write_failed",
                    level=logging.WARNING,
                    message=f"Broadcast to connection {conn_id} failed: {e}",
                    connection_id=conn_id,
                    error_message=str(e),
                )
        return delivered

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> int:
        """Broadcast a notification to all connected clients."""
        return await self.broadcast(notification(method, params))

    # ========== Connection handling ==========

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a client connection."""
        peer = writer.get_extra_info("peername")
        address, port = (peer[0], peer[1]) if isinstance(peer, tuple) else (peer, None)
        conn_id = self._connections.add(address, port, writer)
        pending: set[asyncio.Task[None]] = set()

        def on_oversized(size: int) -> None:
            log_event(
                logger,
                "connection.message_too_large",
                level=logging.WARNING,
                connection_id=conn_id,
                size=size,
                limit=self._max_message_size,
            )
            self._spawn(
                self._write(conn_id, writer, error_response(None, INVALID_REQUEST, "Message too large")),
                pending,
            )

        framer = StreamFramer(max_size=self._max_message_size, on_oversized=on_oversized)

        try:
            if self._send_greeting:
                await self._write(conn_id, writer, self._greeting(conn_id))

            while self._running:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in framer.feed(chunk):
                    self._spawn(self._serve_request(conn_id, writer, message), pending)

        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as e:
            log_event(
                logger,
                "connection.error",
                level=logging.WARNING,
                message=f"Socket error on connection {conn_id}: {e}",
                connection_id=conn_id,
                error_message=str(e),
            )

        finally:
            self._connections.remove(conn_id)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self._close_writer(writer)
            if framer.buffered:
                logger.debug(
                    f"Discarded {framer.buffered} undelimited bytes from connection {conn_id}"
                )

    async def _serve_request(
        self, conn_id: int, writer: asyncio.StreamWriter, message: bytes
    ) -> None:
        response = await self._dispatcher.dispatch(message)
        await self._write(conn_id, writer, response)

    async def _write(
        self, conn_id: int, writer: asyncio.StreamWriter, message: dict[str, Any]
    ) -> None:
        """Write one envelope; failures are logged, never raised."""
        try:
            frame = encode_frame(message)
        except (TypeError, ValueError, RecursionError) as e:
            reason = "nesting too deep" if isinstance(e, RecursionError) else str(e)
            log_event(
                logger,
                "rpc.handler_error",
                level=logging.ERROR,
                message=f"Response for connection {conn_id} is not JSON serializable: {reason}",
                connection_id=conn_id,
                error_message=reason,
            )
            request_id = message.get("id")
            frame = encode_frame(
                error_response(
                    request_id if is_valid_id(request_id) else None,
                    HANDLER_ERROR,
                    f"Result is not JSON serializable: {reason}",
                )
            )

        if writer.is_closing():
            logger.debug(f"Connection {conn_id} closed, dropping response")
            return

        try:
            writer.write(frame)
            await writer.drain()
        except (ConnectionError, OSError, RuntimeError) as e:
            log_event(
                logger,
                "connection.write_failed",
                level=logging.WARNING,
                message=f"Write to connection {conn_id} failed: {e}",
                connection_id=conn_id,
                error_message=str(e),
            )

    def _spawn(
        self, coro: Coroutine[Any, Any, None], pending: set[asyncio.Task[None]]
    ) -> None:
        task = asyncio.create_task(coro)
        pending.add(task)
        self._inflight.add(task)
        task.add_done_callback(pending.discard)
        task.add_done_callback(self._inflight.discard)

    def _greeting(self, conn_id: int) -> dict[str, Any]:
        return notification(
            "connection.accepted",
            {
                "connection_id": conn_id,
                "server": {"name": SERVER_NAME, "version": __version__},
                "tools": self._handlers.names(),
            },
        )

    @staticmethod
    def _close_writer(writer: asyncio.StreamWriter) -> None:
        try:
            writer.close()
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.debug(f"Error closing connection: {e}")


def log_connection_event(event: ConnectionEvent, info: ConnectionInfo) -> None:
    """Registry subscriber that logs connects and disconnects."""
    if event is ConnectionEvent.CONNECTED:
        log_event(
            logger,
            "connection.open",
            message=f"Client connected: {info.address}:{info.port} (ID: {info.id})",
            connection_id=info.id,
            address=info.address,
        )
    else:
        log_event(
            logger,
            "connection.close",
            message=f"Client disconnected: {info.address}:{info.port} (ID: {info.id})",
            connection_id=info.id,
            address=info.address,
            connected_for=info.connected_for,
        )


async def monitor_connections(connections: ConnectionRegistry, interval: float) -> None:
    """Log the active connection count every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        log_event(
            logger,
            "connections.active",
            message=f"Active connections: {connections.count()}",
            active_connections=connections.count(),
        )


def install_exception_handler(loop: asyncio.AbstractEventLoop) -> None:
    """Log exceptions from tasks nobody awaited instead of letting them vanish."""

    def handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        log_event(
            logger,
            "loop.unhandled_error",
            level=logging.ERROR,
            message=f"Unhandled async error: {context.get('message', exc)}",
            error_message=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
        )

    loop.set_exception_handler(handler)


async def run_server(server: ToolSocketServer, monitor_interval: float = 60.0) -> None:
    """Run ``server`` until SIGTERM/SIGINT triggers a graceful shutdown.

    Installs the signal handlers, the loop exception handler, connection
    logging, and the periodic connection monitor for the duration of the run.

    Raises:
        ServerStartupError: If the listening socket cannot be bound.
    """
    connections = server.connections
    unsubscribe = connections.subscribe(log_connection_event)

    loop = asyncio.get_running_loop()
    install_exception_handler(loop)

    def shutdown_handler() -> None:
        logger.info("Shutdown signal received")
        asyncio.ensure_future(server.shutdown())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    monitor: asyncio.Task[None] | None = None
    try:
        await server.start()
        if monitor_interval > 0:
            monitor = asyncio.create_task(monitor_connections(connections, monitor_interval))
        await server.serve_forever()
    finally:
        if monitor is not None:
            monitor.cancel()
            try:
                await monitor
            except asyncio.CancelledError:
                pass
        await server.shutdown()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        unsubscribe()
