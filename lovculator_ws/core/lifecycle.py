"""
Connection Lifecycle Management.

Owns the path every connection takes through the gateway:

    upgrade -> rate-limit gate -> authentication -> accept -> register
    -> presence update -> heartbeat attach -> initial presence snapshot

and the single close path that clean disconnects, heartbeat terminations
and shutdown all go through. Registry and presence bookkeeping is
synchronous, so it runs between awaits without locks. Presence broadcasts
go through the PresenceAnnouncer, which keeps each user's transitions in
order.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

from lovculator_shared.config.logging import (
    audit_rate_limit_event,
    audit_ws_connection,
    get_logger,
    mask_address,
)
from lovculator_shared.config.settings import settings
from lovculator_ws.components.broadcast.presence import PresenceAnnouncer
from lovculator_ws.components.core.constants import WS_ENDPOINT, WSCloseCode, WSConstants
from lovculator_ws.components.core.context import Connection, get_client_address
from lovculator_ws.components.events.types import (
    presence_initial_event,
    server_shutdown_event,
)
from lovculator_ws.core.stats import ConnectionStats

if TYPE_CHECKING:
    from fastapi import WebSocket

    from lovculator_ws.components.auth.strategies import AuthStrategy
    from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher
    from lovculator_ws.components.cluster.bridge import ClusterBridge
    from lovculator_ws.components.connection.heartbeat import HeartbeatMonitor
    from lovculator_ws.components.connection.presence import PresenceTracker
    from lovculator_ws.components.connection.rate_limiter import ConnectionRateLimiter
    from lovculator_ws.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)

SHUTDOWN_MESSAGE = "Server restarting, please reconnect"

# ASGI extension that lets a server answer an upgrade with a plain HTTP response
_DENIAL_EXTENSION = "websocket.http.response"


class ConnectionLifecycle:
    """
    Admits, closes and shuts down connections.

    Usage:
        connection = await lifecycle.admit(websocket)
        if connection is None:
            return  # already denied
        try:
            ...  # message loop
        finally:
            await lifecycle.close(connection)
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        presence: "PresenceTracker",
        heartbeat: "HeartbeatMonitor",
        rate_limiter: "ConnectionRateLimiter",
        bridge: "ClusterBridge",
        auth_strategy: "AuthStrategy",
        announcer: PresenceAnnouncer | None = None,
        stats: ConnectionStats | None = None,
        trust_proxy_headers: bool | None = None,
        accept_timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
    ) -> None:
        """
        Args:
            registry: Connection registry.
            presence: Presence tracker fed from registry counts.
            heartbeat: Monitor the new connection is attached to.
            rate_limiter: Upgrade admission gate per origin address.
            bridge: Dispatch path for presence broadcasts.
            auth_strategy: Resolves the user behind the upgrade request.
            announcer: Presence broadcaster (one over ``bridge`` by default).
            stats: Shared counters.
            trust_proxy_headers: Read the origin address from X-Forwarded-For.
            accept_timeout: Seconds allowed for the handshake.
        """
        self._registry = registry
        self._presence = presence
        self._heartbeat = heartbeat
        self._rate_limiter = rate_limiter
        self._bridge = bridge
        self._auth_strategy = auth_strategy
        self._announcer = announcer or PresenceAnnouncer(bridge)
        self._stats = stats or ConnectionStats()
        self._trust_proxy_headers = (
            settings.ws_trust_proxy_headers if trust_proxy_headers is None else trust_proxy_headers
        )
        self._accept_timeout = accept_timeout

        self._shutting_down = False

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def _dispatcher(self) -> "LocalDispatcher":
        return self._bridge.dispatcher

    # =========================================================================
    # Admission
    # =========================================================================

    async def admit(self, websocket: "WebSocket") -> Connection | None:
        """
        Run the admission pipeline for an upgrade request.

        Returns:
            The registered connection, or None if the upgrade was denied
            (the denial has already been sent).
        """
        origin = websocket.headers.get("origin")

        if self._shutting_down:
            await self._deny(websocket, 503, WSCloseCode.SERVER_OVERLOADED, "Server shutting down")
            return None

        address = get_client_address(websocket, self._trust_proxy_headers)
        if not self._rate_limiter.allow(address):
            self._stats.rejected_rate_limited += 1
            audit_rate_limit_event(
                "ws_upgrade",
                address,
                limit=self._rate_limiter.max_attempts,
                window=int(self._rate_limiter.window_seconds),
                origin=origin,
            )
            await self._deny(websocket, 429, WSCloseCode.RATE_LIMITED, "Too many connection attempts")
            return None

        result = await self._auth_strategy.authenticate(websocket)
        if not result.success or result.user_id is None:
            self._stats.rejected_unauthorized += 1
            audit_ws_connection(
                event_type="AUTH_FAILED",
                endpoint=WS_ENDPOINT,
                origin=origin,
                reason=result.audit_reason,
                ip_address=mask_address(address),
            )
            await self._deny(
                websocket,
                result.status_code,
                result.close_code,
                result.error_message or "Unauthorized",
            )
            return None

        try:
            await asyncio.wait_for(websocket.accept(), timeout=self._accept_timeout)
        except asyncio.TimeoutError:
            logger.warning("WebSocket accept timed out", user_id=result.user_id)
            return None
        except Exception as e:
            logger.warning("WebSocket accept failed", user_id=result.user_id, error=str(e))
            return None

        if self._shutting_down:
            # Shutdown began while this upgrade was authenticating
            await self._close_socket(websocket, WSCloseCode.GOING_AWAY, "Server shutting down")
            return None

        connection = Connection.from_websocket(websocket, result.user_id, address)
        await self._register(connection)
        return connection

    async def _register(self, connection: Connection) -> None:
        user_id = connection.user_id
        self._registry.register(user_id, connection)
        sockets = len(self._registry.get_connections(user_id))
        transition = self._presence.update(user_id, sockets)
        self._heartbeat.attach(connection)
        self._stats.connection_opened()

        connection.audit("CONNECT", sockets=sockets)
        logger.info(
            "Connection registered",
            user_id=user_id,
            connection_id=connection.connection_id,
            sockets=sockets,
        )

        if transition is not None:
            await self._announcer.announce(transition)

        await self._send_initial_presence(connection)

    async def _send_initial_presence(self, connection: Connection) -> None:
        users = [
            record.to_dict()
            for record in self._presence.online_users(
                exclude=connection.user_id,
                limit=WSConstants.MAX_INITIAL_PRESENCE,
            )
        ]
        await self._dispatcher.send(connection, presence_initial_event(users))

    async def _deny(
        self,
        websocket: "WebSocket",
        status_code: int,
        close_code: int,
        message: str,
    ) -> None:
        """Refuse an upgrade with an HTTP status, or a close code if the server can't."""
        try:
            if _DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
                await websocket.send_denial_response(
                    JSONResponse({"detail": message}, status_code=status_code)
                )
            else:
                await websocket.close(code=close_code, reason=message)
        except Exception as e:
            logger.debug("Error sending upgrade denial", status_code=status_code, error=str(e))

    # =========================================================================
    # Close path
    # =========================================================================

    async def close(
        self,
        connection: Connection,
        reason: str = "client_disconnect",
        event_type: str = "DISCONNECT",
        announce: bool = True,
    ) -> bool:
        """
        Run connection cleanup. Idempotent.

        Args:
            connection: Connection to clean up.
            reason: Audit reason.
            event_type: Audit event type.
            announce: Broadcast an offline transition.

        Returns:
            True if this call performed the cleanup.
        """
        if connection.closed:
            return False
        connection.closed = True

        self._heartbeat.detach(connection)
        user_id = self._registry.unregister(connection)
        if user_id is None:
            return False

        sockets = len(self._registry.get_connections(user_id))
        transition = self._presence.update(user_id, sockets)
        self._stats.connection_closed()

        connection.audit(event_type, reason=reason, sockets=sockets)
        logger.info(
            "Connection closed",
            user_id=user_id,
            connection_id=connection.connection_id,
            reason=reason,
            sockets=sockets,
        )

        if transition is not None and announce:
            await self._announcer.announce(transition)
        return True

    async def terminate(self, connection: Connection) -> None:
        """Forcibly close a connection that stopped answering heartbeat probes."""
        if await self.close(connection, reason="heartbeat_timeout", event_type="TERMINATED"):
            self._stats.terminated_dead += 1
        await self._close_socket(
            connection.websocket, WSCloseCode.HEARTBEAT_TIMEOUT, "Heartbeat timeout"
        )

    @staticmethod
    async def _close_socket(websocket: "WebSocket", code: int, reason: str) -> None:
        try:
            await asyncio.wait_for(
                websocket.close(code=code, reason=reason),
                timeout=WSConstants.SEND_TIMEOUT,
            )
        except Exception as e:
            logger.debug("Error closing WebSocket", code=code, error=str(e))

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(
        self,
        grace_period: float | None = None,
        reconnect_delay_ms: int | None = None,
    ) -> int:
        """
        Notify every local connection, close the backplane, then the sockets.

        Sockets still open after ``grace_period`` seconds are cleaned up
        without waiting further.

        Returns:
            Number of connections the SERVER_SHUTDOWN notice was sent to.
        """
        if self._shutting_down:
            return 0
        self._shutting_down = True

        grace = settings.ws_shutdown_grace_period if grace_period is None else grace_period
        delay = (
            settings.ws_shutdown_reconnect_delay_ms
            if reconnect_delay_ms is None
            else reconnect_delay_ms
        )

        connections = [c for c in self._registry.get_all_connections() if c.is_open]
        logger.info("Graceful shutdown started", connections=len(connections), grace_period=grace)

        # Local delivery only: every node sends its own notice
        notified = await self._dispatcher.deliver(
            connections, server_shutdown_event(SHUTDOWN_MESSAGE, delay)
        )

        try:
            await self._bridge.close()
        except Exception as e:
            logger.warning("Error closing cluster bridge", error=str(e))

        if connections:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*[
                        self._close_socket(c.websocket, WSCloseCode.GOING_AWAY, "Server shutting down")
                        for c in connections
                    ]),
                    timeout=grace,
                )
            except asyncio.TimeoutError:
                logger.warning("Shutdown grace period expired, forcing cleanup", grace_period=grace)

        for connection in self._registry.get_all_connections():
            await self.close(connection, reason="server_shutdown", announce=False)

        logger.info("Graceful shutdown complete", notified=notified)
        return notified
