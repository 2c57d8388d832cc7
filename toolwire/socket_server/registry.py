"""Connection registry for the socket server.

Tracks live client connections and publishes connect/disconnect events to
subscriber callbacks. One registry instance is created at startup and
passed to the server and to anything else that enumerates connections.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ConnectionEvent(str, Enum):
    """Lifecycle events published by the registry."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Connection:
    """A live client connection.

    ``handle`` is the server's writer for this socket; the registry stores it
    for enumeration but never uses it.
    """

    id: int
    remote_address: str | None
    remote_port: int | None
    connected_at: datetime
    handle: Any = None

    def summary(self, now: datetime | None = None) -> ConnectionInfo:
        now = now or datetime.now(UTC)
        return ConnectionInfo(
            id=self.id,
            address=self.remote_address,
            port=self.remote_port,
            connected_at=self.connected_at,
            connected_for=max(0, int((now - self.connected_at).total_seconds())),
        )


@dataclass(frozen=True)
class ConnectionInfo:
    """Read-only summary of a connection, as returned by ``list()``."""

    id: int
    address: str | None
    port: int | None
    connected_at: datetime
    connected_for: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "port": self.port,
            "connected_at": self.connected_at.isoformat(),
            "connected_for": self.connected_for,
        }


Subscriber = Callable[[ConnectionEvent, ConnectionInfo], None]


class ConnectionRegistry:
    """Source of truth for who is connected right now.

    Ids are assigned from a monotonic counter and never reused for the
    lifetime of the registry. Mutations are serialized by a lock that is
    released before subscribers run.

    Example:
        registry = ConnectionRegistry()
        unsubscribe = registry.subscribe(lambda event, info: print(event, info.id))
        conn_id = registry.add("127.0.0.1", 52100, writer)
        registry.remove(conn_id)
    """

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def add(
        self,
        remote_address: str | None,
        remote_port: int | None,
        handle: Any = None,
    ) -> int:
        """Register a new connection and return its id."""
        with self._lock:
            conn = Connection(
                id=next(self._ids),
                remote_address=remote_address,
                remote_port=remote_port,
                connected_at=datetime.now(UTC),
                handle=handle,
            )
            self._connections[conn.id] = conn

        self._publish(ConnectionEvent.CONNECTED, conn.summary())
        return conn.id

    def remove(self, connection_id: int) -> ConnectionInfo | None:
        """Deregister a connection. Unknown ids are ignored."""
        with self._lock:
            conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None

        info = conn.summary()
        self._publish(ConnectionEvent.DISCONNECTED, info)
        return info

    def get(self, connection_id: int) -> Connection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def list(self) -> list[ConnectionInfo]:
        """Summaries of all live connections, oldest first."""
        now = datetime.now(UTC)
        with self._lock:
            connections = list(self._connections.values())
        return [conn.summary(now) for conn in connections]

    def handles(self) -> list[tuple[int, Any]]:
        """(id, handle) pairs for every live connection."""
        with self._lock:
            return [(conn.id, conn.handle) for conn in self._connections.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def has_any(self) -> bool:
        return self.count() > 0

    def status(self) -> dict[str, Any]:
        """Connection count plus per-connection summaries."""
        connections = self.list()
        return {
            "active_connections": len(connections),
            "connections": [info.to_dict() for info in connections],
        }

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a lifecycle callback; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def __len__(self) -> int:
        return self.count()

    def _publish(self, event: ConnectionEvent, info: ConnectionInfo) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, info)
            except Exception:
                logger.exception(f"Connection subscriber failed on {event.value}")
