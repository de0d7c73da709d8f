"""
Local Dispatcher.

Delivers an event to live connections held by this process: everyone, or
the connections of an explicit set of users. Never talks to the backplane;
the cluster bridge wraps it for that.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from typing import Any, TYPE_CHECKING

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.core.constants import WSConstants

if TYPE_CHECKING:
    from lovculator_ws.components.connection.registry import ConnectionRegistry
    from lovculator_ws.components.core.context import Connection

logger = get_logger(__name__)


def normalize_user_ids(user_ids: Iterable[Any]) -> list[int]:
    """
    Deduplicate a recipient list, preserving order.

    Ids arriving from JSON may be strings ("42"); anything that is not an
    integer id is dropped with a warning rather than failing the dispatch.
    """
    seen: set[int] = set()
    result: list[int] = []
    for raw in user_ids:
        if isinstance(raw, bool):
            continue
        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid recipient id", recipient=str(raw)[:32])
            continue
        if user_id not in seen:
            seen.add(user_id)
            result.append(user_id)
    return result


class LocalDispatcher:
    """
    Sends JSON events to connections in the local registry.

    Delivery rules:
    - Only connections that are open are attempted; a connection mid-close
      is skipped, never retried.
    - A failed send is logged and counted, and the connection is flagged
      not-alive so the next heartbeat probe reaps it. It never aborts
      delivery to the remaining connections.
    - Return values count sends attempted, not sends confirmed.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        batch_size: int = 50,
        send_timeout: float = WSConstants.SEND_TIMEOUT,
    ) -> None:
        """
        Args:
            registry: Connection registry to read recipients from.
            batch_size: Sends gathered concurrently per batch.
            send_timeout: Per-send timeout in seconds.
        """
        self._registry = registry
        self._batch_size = max(1, batch_size)
        self._send_timeout = send_timeout

        # Metrics
        self._events_dispatched = 0
        self._sends_attempted = 0
        self._sends_failed = 0
        self._sends_skipped = 0

    async def send(self, connection: "Connection", event: dict[str, Any]) -> bool:
        """Send one event to one connection. Returns True on success."""
        if not connection.is_open:
            self._sends_skipped += 1
            return False
        self._sends_attempted += 1
        return await self._send_text(connection, json.dumps(event, default=str))

    async def dispatch_to_all(self, event: dict[str, Any]) -> int:
        """
        Deliver to every open connection of every registered user.

        Returns:
            Number of sends attempted.
        """
        return await self._deliver(self._registry.get_all_connections(), event)

    async def dispatch_to_users(self, user_ids: Iterable[Any], event: dict[str, Any]) -> int:
        """
        Deliver only to connections owned by the given users.

        A user without open connections is a no-op, not an error.

        Returns:
            Number of sends attempted.
        """
        connections: list[Connection] = []
        for user_id in normalize_user_ids(user_ids):
            connections.extend(self._registry.get_connections(user_id))
        return await self._deliver(connections, event)

    async def deliver(self, connections: Iterable["Connection"], event: dict[str, Any]) -> int:
        """Deliver to an explicit set of connections (used by shutdown)."""
        return await self._deliver(list(connections), event)

    async def _deliver(self, connections: list["Connection"], event: dict[str, Any]) -> int:
        self._events_dispatched += 1
        targets = [c for c in connections if c.is_open]
        self._sends_skipped += len(connections) - len(targets)
        if not targets:
            return 0

        # Serialize once for all recipients
        text = json.dumps(event, default=str)
        failed = 0

        for i in range(0, len(targets), self._batch_size):
            batch = targets[i : i + self._batch_size]
            results = await asyncio.gather(
                *[self._send_text(conn, text) for conn in batch],
                return_exceptions=True,
            )
            failed += sum(1 for r in results if r is not True)

        self._sends_attempted += len(targets)
        if failed:
            logger.debug(
                "Dispatch completed with failures",
                event_type=event.get("type"),
                attempted=len(targets),
                failed=failed,
            )
        return len(targets)

    async def _send_text(self, connection: "Connection", text: str) -> bool:
        try:
            await asyncio.wait_for(
                connection.websocket.send_text(text),
                timeout=self._send_timeout,
            )
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._sends_failed += 1
            connection.is_alive = False
            logger.debug(
                "Send failed",
                connection_id=connection.connection_id,
                user_id=connection.user_id,
                error=type(e).__name__,
            )
            return False

    def get_stats(self) -> dict[str, int]:
        return {
            "events_dispatched": self._events_dispatched,
            "sends_attempted": self._sends_attempted,
            "sends_failed": self._sends_failed,
            "sends_skipped": self._sends_skipped,
        }
