"""
Presence Tracker.

Derives online/offline state and last-seen timestamps from registry
mutations. The tracker never counts on its own: callers hand it the
registry's current connection count for the user, so "online" is always
exactly "count > 0" and a duplicate register cannot inflate anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.core.context import to_iso, utc_now

logger = get_logger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class PresenceRecord:
    """Presence of one user. Created on first connection, never deleted."""

    user_id: int
    connection_count: int = 0
    last_seen: datetime | None = None

    @property
    def is_online(self) -> bool:
        return self.connection_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "isOnline": self.is_online,
            "lastSeen": to_iso(self.last_seen) if self.last_seen else None,
        }


class PresenceTracker:
    """
    Per-user state machine: Offline -> Online (first connection) -> Offline
    (last connection closed).

    Usage:
        record = tracker.update(user_id, len(registry.get_connections(user_id)))
        if record is not None:
            ...  # transition happened, broadcast PRESENCE
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._records: dict[int, PresenceRecord] = {}
        self._clock = clock

    def _stamp(self, record: PresenceRecord) -> None:
        # last_seen never moves backwards, even if the clock does
        now = self._clock()
        if record.last_seen is None or now > record.last_seen:
            record.last_seen = now

    def update(self, user_id: int, connection_count: int) -> PresenceRecord | None:
        """
        Record the user's current connection count.

        Returns:
            The record if the user's online flag changed, else None.
        """
        record = self._records.get(user_id)
        if record is None:
            record = PresenceRecord(user_id=user_id)
            self._records[user_id] = record

        was_online = record.is_online
        record.connection_count = max(0, connection_count)
        self._stamp(record)

        if record.is_online != was_online:
            logger.debug(
                "Presence transition",
                user_id=user_id,
                is_online=record.is_online,
                connections=record.connection_count,
            )
            return record
        return None

    def touch(self, user_id: int) -> PresenceRecord | None:
        """Refresh last-seen on an explicit presence update from the client."""
        record = self._records.get(user_id)
        if record is not None:
            self._stamp(record)
        return record

    def get(self, user_id: int) -> PresenceRecord | None:
        return self._records.get(user_id)

    def is_online(self, user_id: int) -> bool:
        record = self._records.get(user_id)
        return record is not None and record.is_online

    def online_users(
        self,
        exclude: int | None = None,
        limit: int | None = None,
    ) -> list[PresenceRecord]:
        """Online users, most recently seen first."""
        online = [
            r for r in self._records.values()
            if r.is_online and r.user_id != exclude
        ]
        online.sort(key=lambda r: r.last_seen or _NEVER, reverse=True)
        return online[:limit] if limit is not None else online

    @property
    def online_count(self) -> int:
        return sum(1 for r in self._records.values() if r.is_online)

    def get_stats(self) -> dict[str, int]:
        return {
            "tracked_users": len(self._records),
            "online_users": self.online_count,
        }
