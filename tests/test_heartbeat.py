"""
Tests for heartbeat probing and dead-connection termination.
"""

import pytest
from unittest.mock import AsyncMock

from lovculator_ws.components.connection.heartbeat import HeartbeatMonitor
from lovculator_ws.components.core.constants import WSCloseCode

from conftest import make_fake_websocket, sent_frames, sent_types


class TestHeartbeatMonitor:
    """Unit behaviour of the probe cycle."""

    @pytest.mark.asyncio
    async def test_first_probe_pings_and_clears_alive(self, dispatcher, connect):
        conn = connect(1)
        monitor = HeartbeatMonitor(dispatcher, interval=30.0, on_dead=AsyncMock())
        monitor.attach(conn)

        assert await monitor.probe() == 0
        assert conn.is_alive is False
        assert sent_types(conn.websocket) == ["PING"]

    @pytest.mark.asyncio
    async def test_unanswered_probe_hands_connection_over_once(self, dispatcher, connect):
        conn = connect(1)
        on_dead = AsyncMock()
        monitor = HeartbeatMonitor(dispatcher, interval=30.0, on_dead=on_dead)
        monitor.attach(conn)

        await monitor.probe()
        assert await monitor.probe() == 1
        assert await monitor.probe() == 0

        on_dead.assert_awaited_once_with(conn)
        assert monitor.is_attached(conn) is False

    @pytest.mark.asyncio
    async def test_any_frame_counts_as_answer(self, dispatcher, connect):
        conn = connect(1)
        on_dead = AsyncMock()
        monitor = HeartbeatMonitor(dispatcher, interval=30.0, on_dead=on_dead)
        monitor.attach(conn)

        for _ in range(3):
            await monitor.probe()
            monitor.mark_alive(conn)

        on_dead.assert_not_awaited()
        assert sent_types(conn.websocket) == ["PING", "PING", "PING"]

    @pytest.mark.asyncio
    async def test_dead_handler_errors_are_contained(self, dispatcher, connect):
        dead, healthy = connect(1), connect(2)
        monitor = HeartbeatMonitor(
            dispatcher, interval=30.0, on_dead=AsyncMock(side_effect=RuntimeError("boom"))
        )
        monitor.attach(dead)
        monitor.attach(healthy)
        await monitor.probe()
        monitor.mark_alive(healthy)

        assert await monitor.probe() == 1
        assert sent_types(healthy.websocket) == ["PING", "PING"]

    def test_interval_must_be_positive(self, dispatcher):
        with pytest.raises(ValueError):
            HeartbeatMonitor(dispatcher, interval=0)


class TestHeartbeatTermination:
    """Termination runs the standard close path exactly once."""

    @pytest.mark.asyncio
    async def test_silent_connection_is_terminated_after_two_intervals(self, manager):
        watcher = await manager.lifecycle.admit(make_fake_websocket(user_id=2))
        silent = await manager.lifecycle.admit(make_fake_websocket(user_id=1))
        assert manager.presence.is_online(1)

        await manager.heartbeat.probe()
        manager.heartbeat.mark_alive(watcher)
        await manager.heartbeat.probe()

        assert manager.registry.get_connections(1) == frozenset()
        assert manager.presence.is_online(1) is False
        assert silent.closed is True
        assert manager.stats.terminated_dead == 1
        assert manager.stats.active_connections == 1
        silent.websocket.close.assert_awaited_once()
        assert silent.websocket.close.await_args.kwargs["code"] == WSCloseCode.HEARTBEAT_TIMEOUT

        # Watcher saw user 1 come online and go offline
        presence = [
            f for f in sent_frames(watcher.websocket)
            if f["type"] == "PRESENCE" and f["userId"] == 1
        ]
        assert [f["isOnline"] for f in presence] == [True, False]

        # The endpoint's own cleanup afterwards is a no-op
        assert await manager.lifecycle.close(silent) is False
        assert manager.stats.terminated_dead == 1

    @pytest.mark.asyncio
    async def test_responsive_connection_survives(self, manager):
        conn = await manager.lifecycle.admit(make_fake_websocket(user_id=1))

        for _ in range(3):
            await manager.heartbeat.probe()
            await manager.router.route(conn, '{"type": "PONG"}')

        assert conn.closed is False
        assert manager.registry.is_registered(conn)
