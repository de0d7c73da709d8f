"""
WebSocket Connection Manager.

Thin orchestrator that wires the gateway components together and exposes
them to the application:

- ConnectionRegistry / PresenceTracker: who is connected, who is online
- ConnectionRateLimiter: upgrade admission per origin address
- LocalDispatcher + ClusterBridge: local delivery and cluster replication
- PresenceAnnouncer: PRESENCE broadcasts, ordered per user
- HeartbeatMonitor: liveness probes, dead connections go to the lifecycle
- ConnectionLifecycle: admission, close path, graceful shutdown
- EventRouter: frames sent by clients
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, TYPE_CHECKING

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings
from lovculator_ws.components.auth.strategies import AuthStrategy, create_default_auth_strategy
from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher
from lovculator_ws.components.broadcast.presence import PresenceAnnouncer
from lovculator_ws.components.cluster.bridge import ClusterBridge, create_cluster_bridge
from lovculator_ws.components.connection.heartbeat import HeartbeatMonitor
from lovculator_ws.components.connection.presence import PresenceTracker
from lovculator_ws.components.connection.rate_limiter import ConnectionRateLimiter
from lovculator_ws.components.connection.registry import ConnectionRegistry
from lovculator_ws.components.core.constants import WSConstants
from lovculator_ws.components.data.participants import ConversationParticipantRepository
from lovculator_ws.components.events.router import EventRouter
from lovculator_ws.core import ConnectionLifecycle, ConnectionStats

if TYPE_CHECKING:
    from lovculator_ws.components.core.context import Connection

logger = get_logger(__name__)

__all__ = ["ConnectionManager"]


class ConnectionManager:
    """
    Owns every piece of per-process gateway state.

    Configuration from settings:
    - ws_heartbeat_interval: probe interval (default: 30s)
    - ws_connect_rate_limit / ws_connect_rate_window: 15 upgrades per 60s
    - ws_broadcast_batch_size: concurrent sends per batch (default: 50)
    - redis_url: empty for single-process mode

    Usage:
        manager = ConnectionManager()
        await manager.bridge.start()
        ...
        await manager.lifecycle.shutdown()
    """

    def __init__(
        self,
        auth_strategy: AuthStrategy | None = None,
        participants: ConversationParticipantRepository | None = None,
        redis_url: str | None = None,
        heartbeat_interval: float | None = None,
        debug_requests_enabled: bool | None = None,
    ) -> None:
        """
        Args:
            auth_strategy: Upgrade authentication (session cookie by default).
            participants: Conversation membership lookups.
            redis_url: Backplane URL, overriding settings ("" forces single-process).
            heartbeat_interval: Probe interval in seconds, overriding settings.
            debug_requests_enabled: Answer DEBUG_REQUEST frames, overriding settings.
        """
        self._registry = ConnectionRegistry()
        self._presence = PresenceTracker()
        self._rate_limiter = ConnectionRateLimiter(
            max_attempts=settings.ws_connect_rate_limit,
            window_seconds=settings.ws_connect_rate_window,
            max_tracked=WSConstants.MAX_TRACKED_ADDRESSES,
        )
        self._dispatcher = LocalDispatcher(
            self._registry,
            batch_size=settings.ws_broadcast_batch_size,
        )
        self._bridge = create_cluster_bridge(self._dispatcher, redis_url=redis_url)
        self._announcer = PresenceAnnouncer(self._bridge)
        self._heartbeat = HeartbeatMonitor(
            self._dispatcher,
            interval=heartbeat_interval or settings.ws_heartbeat_interval,
        )
        self._stats = ConnectionStats()

        self._lifecycle = ConnectionLifecycle(
            registry=self._registry,
            presence=self._presence,
            heartbeat=self._heartbeat,
            rate_limiter=self._rate_limiter,
            bridge=self._bridge,
            auth_strategy=auth_strategy or create_default_auth_strategy(),
            announcer=self._announcer,
            stats=self._stats,
        )
        self._heartbeat.set_dead_handler(self._lifecycle.terminate)

        self._participants = participants or ConversationParticipantRepository()
        self._router = EventRouter(
            bridge=self._bridge,
            presence=self._presence,
            participants=self._participants,
            heartbeat=self._heartbeat,
            announcer=self._announcer,
            debug_enabled=debug_requests_enabled,
            socket_count=self.socket_count,
        )

    # =========================================================================
    # Components
    # =========================================================================

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    @property
    def rate_limiter(self) -> ConnectionRateLimiter:
        return self._rate_limiter

    @property
    def dispatcher(self) -> LocalDispatcher:
        return self._dispatcher

    @property
    def bridge(self) -> ClusterBridge:
        return self._bridge

    @property
    def announcer(self) -> PresenceAnnouncer:
        return self._announcer

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def lifecycle(self) -> ConnectionLifecycle:
        return self._lifecycle

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def node_id(self) -> str:
        return self._bridge.node_id

    @property
    def by_user(self) -> MappingProxyType[int, set["Connection"]]:
        """Connections indexed by user ID."""
        return self._registry.by_user

    def socket_count(self, user_id: int) -> int:
        return len(self._registry.get_connections(user_id))

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats_sync(self) -> dict[str, Any]:
        """Lightweight counters for the health check."""
        return {
            "node_id": self.node_id,
            "active_connections": self._stats.active_connections,
            "total_connections": self._stats.total_connections,
            "peak_connections": self._stats.peak_connections,
            "users_connected": self._registry.user_count,
            "online_users": self._presence.online_count,
            "backplane": self._bridge.backend,
            "backplane_connected": self._bridge.is_connected,
        }

    def get_status(self) -> dict[str, Any]:
        """Full diagnostic snapshot for the status endpoint."""
        return {
            "node_id": self.node_id,
            "shutting_down": self._lifecycle.is_shutting_down,
            "connections": self._stats.to_dict(),
            "registry": self._registry.get_stats(),
            "presence": self._presence.get_stats(),
            "rate_limiter": self._rate_limiter.get_stats(),
            "heartbeat": self._heartbeat.get_stats(),
            "dispatcher": self._dispatcher.get_stats(),
            "presence_announcer": self._announcer.get_stats(),
            "router": self._router.get_stats(),
            "participants": self._participants.get_stats(),
            "backplane": self._bridge.get_status(),
        }
