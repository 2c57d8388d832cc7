"""Tests for the connection registry."""

import threading
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

from toolwire.socket_server.registry import (
    Connection,
    ConnectionEvent,
    ConnectionInfo,
    ConnectionRegistry,
)


class TestConnectionRegistry:
    """Tests for add/remove/list."""

    def test_ids_start_at_one_and_increase(self, connections: ConnectionRegistry) -> None:
        ids = [connections.add("127.0.0.1", 5000 + i) for i in range(5)]
        assert ids == [1, 2, 3, 4, 5]

    def test_ids_never_reused(self, connections: ConnectionRegistry) -> None:
        first = connections.add("127.0.0.1", 5000)
        connections.remove(first)
        second = connections.add("127.0.0.1", 5001)
        assert second > first

    def test_count_tracks_adds_minus_removes(self, connections: ConnectionRegistry) -> None:
        ids = [connections.add("10.0.0.1", 6000 + i) for i in range(6)]
        for conn_id in ids[:2]:
            connections.remove(conn_id)

        assert connections.count() == 4
        assert len(connections) == 4
        assert connections.has_any()

    def test_empty_registry(self, connections: ConnectionRegistry) -> None:
        assert connections.count() == 0
        assert not connections.has_any()
        assert connections.list() == []
        assert connections.status() == {"active_connections": 0, "connections": []}

    def test_remove_unknown_is_noop(self, connections: ConnectionRegistry) -> None:
        callback = MagicMock()
        connections.subscribe(callback)

        assert connections.remove(42) is None
        callback.assert_not_called()

    def test_remove_twice_publishes_once(self, connections: ConnectionRegistry) -> None:
        conn_id = connections.add("127.0.0.1", 5000)
        events: list[ConnectionEvent] = []
        connections.subscribe(lambda event, info: events.append(event))

        assert connections.remove(conn_id) is not None
        assert connections.remove(conn_id) is None
        assert events == [ConnectionEvent.DISCONNECTED]

    def test_list_returns_summaries(self, connections: ConnectionRegistry) -> None:
        handle = object()
        conn_id = connections.add("192.168.1.5", 40000, handle)

        (info,) = connections.list()
        assert isinstance(info, ConnectionInfo)
        assert info.id == conn_id
        assert info.address == "192.168.1.5"
        assert info.port == 40000
        assert info.connected_for >= 0

    def test_get_and_handles(self, connections: ConnectionRegistry) -> None:
        handle = object()
        conn_id = connections.add("127.0.0.1", 5000, handle)

        conn = connections.get(conn_id)
        assert conn is not None
        assert conn.handle is handle
        assert connections.handles() == [(conn_id, handle)]
        assert connections.get(conn_id + 1) is None

    def test_status_shape(self, connections: ConnectionRegistry) -> None:
        connections.add("127.0.0.1", 5000)
        status = connections.status()

        assert status["active_connections"] == 1
        entry = status["connections"][0]
        assert set(entry) == {"id", "address", "port", "connected_at", "connected_for"}

    def test_concurrent_adds_get_unique_ids(self, connections: ConnectionRegistry) -> None:
        ids: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(100):
                conn_id = connections.add("127.0.0.1", 1)
                with lock:
                    ids.append(conn_id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 800
        assert connections.count() == 800


class TestConnectionEvents:
    """Tests for subscriber notifications."""

    def test_connect_and_disconnect_published(self, connections: ConnectionRegistry) -> None:
        seen: list[tuple[ConnectionEvent, int]] = []
        connections.subscribe(lambda event, info: seen.append((event, info.id)))

        conn_id = connections.add("127.0.0.1", 5000)
        connections.remove(conn_id)

        assert seen == [
            (ConnectionEvent.CONNECTED, conn_id),
            (ConnectionEvent.DISCONNECTED, conn_id),
        ]

    def test_unsubscribe(self, connections: ConnectionRegistry) -> None:
        callback = MagicMock()
        unsubscribe = connections.subscribe(callback)
        unsubscribe()
        unsubscribe()

        connections.add("127.0.0.1", 5000)
        callback.assert_not_called()

    def test_failing_subscriber_does_not_block_others(
        self, connections: ConnectionRegistry
    ) -> None:
        def broken(event: ConnectionEvent, info: ConnectionInfo) -> None:
            raise RuntimeError("subscriber broke")

        received = MagicMock()
        connections.subscribe(broken)
        connections.subscribe(received)

        conn_id = connections.add("127.0.0.1", 5000)

        assert connections.count() == 1
        received.assert_called_once()
        assert received.call_args.args[1].id == conn_id

    def test_subscriber_may_query_registry(self, connections: ConnectionRegistry) -> None:
        """Callbacks run outside the lock, so reading the registry does not deadlock."""
        counts: list[int] = []
        connections.subscribe(lambda event, info: counts.append(connections.count()))

        conn_id = connections.add("127.0.0.1", 5000)
        connections.remove(conn_id)

        assert counts == [1, 0]


class TestConnection:
    """Tests for Connection summaries."""

    def test_connected_for_whole_seconds(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=UTC)
        conn = Connection(id=1, remote_address="::1", remote_port=1, connected_at=start)

        info = conn.summary(now=start + timedelta(seconds=90, milliseconds=700))

        assert info.connected_for == 90
        assert info.to_dict()["connected_at"] == start.isoformat()
