"""
Presence Announcer.

Broadcasts PRESENCE events for presence records. Announcements for the
same user go out in the order they were requested; announcements for
different users never wait on each other, so a slow peer delays one user's
broadcast at a time instead of every presence change in the process.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, TYPE_CHECKING

from lovculator_ws.components.events.types import presence_event

if TYPE_CHECKING:
    from lovculator_ws.components.cluster.bridge import ClusterBridge
    from lovculator_ws.components.connection.presence import PresenceRecord


@dataclass
class _UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class PresenceAnnouncer:
    """
    Serializes presence broadcasts per user.

    Usage:
        announcer = PresenceAnnouncer(bridge)
        await announcer.announce(record)
    """

    def __init__(self, bridge: "ClusterBridge") -> None:
        self._bridge = bridge
        self._locks: dict[int, _UserLock] = {}

        self._announced = 0

    @asynccontextmanager
    async def _user_lock(self, user_id: int) -> AsyncIterator[None]:
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = _UserLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[user_id]

    async def announce(self, record: "PresenceRecord") -> int:
        """
        Broadcast ``record`` to every connection in the cluster.

        Returns:
            Local sends attempted.
        """
        # Build the event before waiting so it carries the transition's own timestamp
        snapshot = record.to_dict()
        event = presence_event(record.user_id, snapshot["isOnline"], snapshot["lastSeen"])
        async with self._user_lock(record.user_id):
            sent = await self._bridge.dispatch_to_all(event)
        self._announced += 1
        return sent

    @property
    def pending_users(self) -> int:
        """Users with an announcement in flight or queued."""
        return len(self._locks)

    def get_stats(self) -> dict[str, int]:
        return {
            "announced": self._announced,
            "pending_users": self.pending_users,
        }
