"""
Heartbeat Monitor for the WebSocket Gateway.

Probes every attached connection on a fixed interval. The probe is an
application-level PING frame (ASGI exposes no protocol pings); the client
answers with PONG, and any other inbound frame counts as an answer too.

A connection that is still unanswered when the next probe fires is
terminated through the coordinator's close path, the same cleanup a clean
close gets.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TYPE_CHECKING

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.events.types import ping_event

if TYPE_CHECKING:
    from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher
    from lovculator_ws.components.core.context import Connection

logger = get_logger(__name__)


class HeartbeatMonitor:
    """
    Liveness tracking for attached connections.

    Per probe cycle, for each attached connection:
    - not alive since the previous probe: hand it to ``on_dead`` (once)
    - otherwise: clear the alive flag and send a PING

    Usage:
        monitor = HeartbeatMonitor(dispatcher, interval=30.0, on_dead=coordinator.terminate)
        monitor.attach(conn)
        task = asyncio.create_task(monitor.run())
    """

    def __init__(
        self,
        dispatcher: "LocalDispatcher",
        interval: float,
        on_dead: Callable[["Connection"], Awaitable[None]] | None = None,
    ):
        """
        Args:
            dispatcher: Used to send probes (failures are handled there).
            interval: Seconds between probes.
            on_dead: Coroutine run for each connection that missed a probe.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._dispatcher = dispatcher
        self._interval = interval
        self._on_dead = on_dead
        self._attached: set[Connection] = set()

        self._probes_sent = 0
        self._terminated = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def tracked_count(self) -> int:
        return len(self._attached)

    def set_dead_handler(self, on_dead: Callable[["Connection"], Awaitable[None]]) -> None:
        self._on_dead = on_dead

    def attach(self, connection: "Connection") -> None:
        """Start probing a connection. It begins alive."""
        connection.is_alive = True
        self._attached.add(connection)

    def detach(self, connection: "Connection") -> None:
        """Stop probing a connection. Safe to call more than once."""
        self._attached.discard(connection)

    def is_attached(self, connection: "Connection") -> bool:
        return connection in self._attached

    @staticmethod
    def mark_alive(connection: "Connection") -> None:
        """Record that the peer answered (any inbound frame)."""
        connection.is_alive = True

    async def probe(self) -> int:
        """
        Run one probe cycle.

        Returns:
            Number of connections handed to ``on_dead`` in this cycle.
        """
        dead: list[Connection] = []
        to_ping: list[Connection] = []

        for conn in list(self._attached):
            if not conn.is_alive:
                dead.append(conn)
            else:
                conn.is_alive = False
                to_ping.append(conn)

        for conn in dead:
            # Detach first so a slow close can never be handed over twice
            self.detach(conn)
            self._terminated += 1
            logger.info(
                "Terminating unresponsive connection",
                connection_id=conn.connection_id,
                user_id=conn.user_id,
            )
            if self._on_dead is not None:
                try:
                    await self._on_dead(conn)
                except Exception as e:
                    logger.error(
                        "Error terminating dead connection",
                        connection_id=conn.connection_id,
                        error=str(e),
                    )

        if to_ping:
            self._probes_sent += await self._dispatcher.deliver(to_ping, ping_event())

        return len(dead)

    async def run(self) -> None:
        """Probe forever on the configured interval (cancel to stop)."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.probe()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in heartbeat probe cycle", error=str(e))

    def get_stats(self) -> dict[str, int | float]:
        return {
            "tracked_connections": len(self._attached),
            "interval_seconds": self._interval,
            "probes_sent": self._probes_sent,
            "terminated": self._terminated,
        }
