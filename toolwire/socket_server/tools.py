"""Reference tool implementations.

Standalone async functions for each JSON-RPC method. Dependencies (the
connection registry, a port getter) are bound explicitly at
registration time by ``register_default_tools``.
"""

from __future__ import annotations

import functools
import platform
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import psutil

from toolwire import __version__
from toolwire.socket_server.dispatcher import HandlerRegistry
from toolwire.socket_server.protocol import INVALID_PARAMS, JsonRpcError
from toolwire.socket_server.registry import ConnectionRegistry

TIME_FORMATS = ("iso", "unix", "human")
INFO_DETAILS = ("version", "system", "connectivity", "all")

_started_at = time.monotonic()


def uptime_seconds() -> int:
    """Whole seconds since this module was imported."""
    return int(time.monotonic() - _started_at)


def process_memory() -> dict[str, float]:
    """Resident and virtual memory of this process, in MB."""
    info = psutil.Process().memory_info()
    return {
        "rss_mb": round(info.rss / 1024 / 1024, 1),
        "vms_mb": round(info.vms / 1024 / 1024, 1),
    }


async def handle_ping(params: dict[str, Any]) -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}


async def handle_echo(params: dict[str, Any]) -> dict[str, Any]:
    """Return the given text unchanged."""
    return {"text": params["text"]}


async def handle_get_time(params: dict[str, Any]) -> dict[str, Any]:
    """Current time as ISO-8601 (default), unix seconds, or a human string."""
    fmt = params.get("format", "iso")
    if fmt not in TIME_FORMATS:
        raise JsonRpcError(
            INVALID_PARAMS,
            f"Invalid params: format must be one of {', '.join(TIME_FORMATS)}",
        )

    now = datetime.now(UTC)
    if fmt == "unix":
        return {"timestamp": int(now.timestamp())}
    if fmt == "human":
        return {"time": now.astimezone().strftime("%c")}
    return {"time": now.isoformat().replace("+00:00", "Z")}


async def handle_server_info(
    params: dict[str, Any], *, connections: ConnectionRegistry, port: Callable[[], int]
) -> dict[str, Any]:
    """Static server facts; ``detail`` selects one section or "all"."""
    detail = params.get("detail", "all")
    if detail not in INFO_DETAILS:
        raise JsonRpcError(
            INVALID_PARAMS,
            f"Invalid params: detail must be one of {', '.join(INFO_DETAILS)}",
        )

    info: dict[str, Any] = {
        "version": __version__,
        "system": platform.system().lower(),
        "connectivity": {
            "transport": "tcp",
            "port": port(),
            "active_connections": connections.count(),
        },
    }
    if detail == "all":
        return info
    return {detail: info[detail]}


async def handle_server_status(
    params: dict[str, Any], *, connections: ConnectionRegistry
) -> dict[str, Any]:
    """Uptime and connection count, plus process memory when asked."""
    status: dict[str, Any] = {
        "uptime": uptime_seconds(),
        "active_connections": connections.count(),
    }
    if params.get("include_memory", False):
        status["memory"] = process_memory()
    return status


def register_default_tools(
    handlers: HandlerRegistry, connections: ConnectionRegistry, port: Callable[[], int]
) -> None:
    """Register the built-in tools on ``handlers``.

    ``port`` is called on each server_info request, so it can report the
    bound port of a server started on port 0.
    """
    handlers.register("ping", handle_ping, description="Liveness check")

    handlers.register(
        "echo",
        handle_echo,
        {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
        description="Echoes back the input text",
    )

    handlers.register(
        "get_time",
        handle_get_time,
        {
            "type": "object",
            "properties": {"format": {"type": "string", "enum": list(TIME_FORMATS)}},
        },
        description="Returns the current time in various formats",
    )

    handlers.register(
        "server_info",
        functools.partial(handle_server_info, connections=connections, port=port),
        {
            "type": "object",
            "properties": {"detail": {"type": "string", "enum": list(INFO_DETAILS)}},
        },
        description="Server version, platform, and connectivity",
    )

    handlers.register(
        "server_status",
        functools.partial(handle_server_status, connections=connections),
        {
            "type": "object",
            "properties": {"include_memory": {"type": "boolean"}},
        },
        description="Uptime, active connections, and optional memory usage",
    )
