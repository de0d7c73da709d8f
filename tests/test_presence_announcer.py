"""
Tests for presence announcements.

Tests verify:
- A peer that never acknowledges a send delays each announcement by at most
  one send timeout, not one per concurrent user
- Announcements for the same user reach peers in the order requested
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher
from lovculator_ws.components.broadcast.presence import PresenceAnnouncer
from lovculator_ws.components.cluster.bridge import NullClusterBridge
from lovculator_ws.components.connection.presence import PresenceTracker

from conftest import make_fake_websocket, sent_frames


SEND_TIMEOUT = 0.3


async def never_acknowledged(text: str) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def announcer(registry):
    dispatcher = LocalDispatcher(registry, send_timeout=SEND_TIMEOUT)
    return PresenceAnnouncer(NullClusterBridge(dispatcher))


class TestPresenceAnnouncer:

    @pytest.mark.asyncio
    async def test_stuck_peer_does_not_serialize_unrelated_users(self, announcer, connect):
        stuck = connect(99)
        stuck.websocket.send_text = AsyncMock(side_effect=never_acknowledged)
        tracker = PresenceTracker()
        records = [tracker.update(user_id, 1) for user_id in (1, 2, 3, 4)]

        started = time.monotonic()
        await asyncio.gather(*[announcer.announce(record) for record in records])
        elapsed = time.monotonic() - started

        assert elapsed < SEND_TIMEOUT * 2
        assert announcer.get_stats() == {"announced": 4, "pending_users": 0}

    @pytest.mark.asyncio
    async def test_same_user_announcements_keep_order(self, announcer, connect):
        watcher = connect(50)
        delays = iter([0.05, 0])

        async def slow_first_send(text: str) -> None:
            await asyncio.sleep(next(delays))

        watcher.websocket.send_text = AsyncMock(side_effect=slow_first_send)
        tracker = PresenceTracker()

        online = asyncio.create_task(announcer.announce(tracker.update(1, 1)))
        await asyncio.sleep(0)
        offline = asyncio.create_task(announcer.announce(tracker.update(1, 0)))
        await asyncio.gather(online, offline)

        frames = sent_frames(watcher.websocket)
        assert [f["isOnline"] for f in frames] == [True, False]
        assert announcer.pending_users == 0

    @pytest.mark.asyncio
    async def test_concurrent_admits_with_a_stuck_peer(self, manager, monkeypatch):
        stuck = await manager.lifecycle.admit(make_fake_websocket(user_id=99))
        stuck.websocket.send_text = AsyncMock(side_effect=never_acknowledged)
        monkeypatch.setattr(manager.dispatcher, "_send_timeout", SEND_TIMEOUT)

        started = time.monotonic()
        admitted = await asyncio.gather(*[
            manager.lifecycle.admit(make_fake_websocket(user_id=user_id)) for user_id in (1, 2, 3, 4)
        ])
        elapsed = time.monotonic() - started

        assert all(conn is not None for conn in admitted)
        assert elapsed < SEND_TIMEOUT * 2
        assert manager.presence.online_count == 5
