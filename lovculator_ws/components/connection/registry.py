"""
Connection Registry.

Tracks, per user, the set of currently open connections. All methods are
synchronous and run on the event loop thread, so each mutation is atomic
with respect to other coroutines (no await happens mid-update).
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from lovculator_shared.config.logging import get_logger

if TYPE_CHECKING:
    from lovculator_ws.components.core.context import Connection

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Bidirectional index between users and their connections.

    Invariants:
    - A connection appears in at most one user's set.
    - A user with no open connections has no entry at all, so "no entry"
      and "empty set" never need to be told apart.
    """

    def __init__(self) -> None:
        self._by_user: dict[int, set[Connection]] = {}
        self._owner: dict[Connection, int] = {}

    @property
    def by_user(self) -> MappingProxyType[int, set[Connection]]:
        """Read-only view of the user -> connections map."""
        return MappingProxyType(self._by_user)

    @property
    def connection_count(self) -> int:
        return len(self._owner)

    @property
    def user_count(self) -> int:
        return len(self._by_user)

    def register(self, user_id: int, connection: Connection) -> bool:
        """
        Add a connection to the user's set, creating the set if absent.

        Registering the same connection twice is a no-op.

        Returns:
            True if the connection was newly added.
        """
        previous_owner = self._owner.get(connection)
        if previous_owner == user_id:
            return False
        if previous_owner is not None:
            # Never let one socket sit in two users' sets
            logger.warning(
                "Connection re-registered under a different user",
                connection_id=connection.connection_id,
                previous_user_id=previous_owner,
                user_id=user_id,
            )
            self.unregister(connection)

        self._by_user.setdefault(user_id, set()).add(connection)
        self._owner[connection] = user_id
        return True

    def unregister(self, connection: Connection) -> int | None:
        """
        Remove a connection from its owner's set.

        Drops the user's entry when the set becomes empty.

        Returns:
            The owning user id, or None if the connection was not registered.
        """
        user_id = self._owner.pop(connection, None)
        if user_id is None:
            return None

        connections = self._by_user.get(user_id)
        if connections is not None:
            connections.discard(connection)
            if not connections:
                del self._by_user[user_id]
        return user_id

    def get_connections(self, user_id: int) -> frozenset[Connection]:
        """Current connections of a user (empty if offline)."""
        return frozenset(self._by_user.get(user_id, ()))

    def get_owner(self, connection: Connection) -> int | None:
        return self._owner.get(connection)

    def is_registered(self, connection: Connection) -> bool:
        return connection in self._owner

    def get_all_connections(self) -> list[Connection]:
        """Snapshot of every registered connection, safe to iterate while sending."""
        return list(self._owner)

    def get_user_ids(self) -> list[int]:
        return list(self._by_user)

    def get_stats(self) -> dict[str, int]:
        return {
            "users": len(self._by_user),
            "connections": len(self._owner),
        }
