"""
Tests for the local dispatcher.

Tests verify:
- Targeted dispatch reaches exactly the target users' connections
- A failing send never prevents delivery to the remaining connections
- Connections that are not open are skipped
"""

import asyncio

import pytest
from starlette.websockets import WebSocketState

from lovculator_ws.components.broadcast.dispatcher import normalize_user_ids

from conftest import sent_frames


EVENT = {"type": "LIKE_UPDATE", "postId": 9, "like_count": 3}


class TestNormalizeUserIds:

    def test_dedupes_preserving_order(self):
        assert normalize_user_ids([3, 1, 3, "1", "2"]) == [3, 1, 2]

    def test_skips_invalid_ids(self):
        assert normalize_user_ids([1, None, "abc", True, 2.0]) == [1, 2]


class TestLocalDispatcher:
    """Tests for LocalDispatcher delivery rules."""

    @pytest.mark.asyncio
    async def test_dispatch_to_users_counts_only_targets(self, dispatcher, connect):
        u1_a, u1_b = connect(1), connect(1)
        other = connect(3)

        sent = await dispatcher.dispatch_to_users([1, 2], EVENT)

        assert sent == 2
        assert sent_frames(u1_a.websocket) == [EVENT]
        assert sent_frames(u1_b.websocket) == [EVENT]
        other.websocket.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatch_to_users_deduplicates(self, dispatcher, connect):
        conn = connect(1)
        sent = await dispatcher.dispatch_to_users([1, 1, "1"], EVENT)

        assert sent == 1
        assert conn.websocket.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_user_without_connections_is_noop(self, dispatcher):
        assert await dispatcher.dispatch_to_users([42], EVENT) == 0

    @pytest.mark.asyncio
    async def test_dispatch_to_all_counts_every_open_connection(self, dispatcher, connect):
        conns = [connect(1), connect(1), connect(2), connect(3), connect(4)]

        assert await dispatcher.dispatch_to_all(EVENT) == 5
        for conn in conns:
            assert sent_frames(conn.websocket) == [EVENT]

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_delivery(self, dispatcher, connect):
        conns = [connect(1), connect(2), connect(3), connect(4)]
        conns[0].websocket.send_text.side_effect = ConnectionError("broken pipe")
        conns[2].websocket.send_text.side_effect = RuntimeError("closed")

        sent = await dispatcher.dispatch_to_all(EVENT)

        assert sent == 4
        for conn in (conns[1], conns[3]):
            assert sent_frames(conn.websocket) == [EVENT]
        assert conns[0].is_alive is False
        assert conns[1].is_alive is True
        assert dispatcher.get_stats()["sends_failed"] == 2

    @pytest.mark.asyncio
    async def test_slow_send_times_out(self, dispatcher, connect):
        slow, fast = connect(1), connect(2)

        async def hang(_text):
            await asyncio.sleep(10)

        slow.websocket.send_text.side_effect = hang
        dispatcher._send_timeout = 0.05

        assert await dispatcher.dispatch_to_all(EVENT) == 2
        assert sent_frames(fast.websocket) == [EVENT]
        assert slow.is_alive is False

    @pytest.mark.asyncio
    async def test_skips_connections_not_open(self, dispatcher, connect):
        closing, closed_flag, live = connect(1), connect(1), connect(1)
        closing.websocket.application_state = WebSocketState.DISCONNECTED
        closed_flag.closed = True

        assert await dispatcher.dispatch_to_users([1], EVENT) == 1
        closing.websocket.send_text.assert_not_awaited()
        closed_flag.websocket.send_text.assert_not_awaited()
        assert sent_frames(live.websocket) == [EVENT]

    @pytest.mark.asyncio
    async def test_send_single_connection(self, dispatcher, connect):
        conn = connect(1)
        assert await dispatcher.send(conn, EVENT) is True

        conn.closed = True
        assert await dispatcher.send(conn, EVENT) is False
        assert conn.websocket.send_text.await_count == 1
