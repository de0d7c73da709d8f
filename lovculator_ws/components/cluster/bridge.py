"""
Cluster Fan-out Bridge.

Makes a multi-process deployment behave as one logical broadcaster. Every
dispatch is delivered to this node's connections first, then published to
the backplane as a ClusterEnvelope tagged with this node's id. Envelopes
received from the backplane go to the local-only path, never back to the
backplane, and envelopes carrying our own id are discarded.

Two implementations, chosen once at construction by create_cluster_bridge():
- NullClusterBridge: single-process mode, local delivery only.
- RedisClusterBridge: Redis pub/sub on settings.ws_cluster_channel.

Callers (presence, event router, publisher) only ever see ClusterBridge, so
none of them branch on whether clustering is enabled.
"""

from __future__ import annotations

import asyncio
import os
import secrets
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Awaitable, Callable, TYPE_CHECKING

import redis.exceptions

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings
from lovculator_shared.infrastructure.redis_pool import get_redis_pool
from lovculator_ws.components.broadcast.dispatcher import normalize_user_ids
from lovculator_ws.components.core.constants import ClusterTarget
from lovculator_ws.components.events.types import ClusterEnvelope, MalformedFrameError
from lovculator_ws.components.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
)
from lovculator_ws.components.resilience.retry import (
    RetryConfig,
    calculate_delay_with_jitter,
    create_redis_retry_config,
)

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher

logger = get_logger(__name__)


def generate_node_id() -> str:
    """Process identity used to recognise our own envelopes: node-<pid>-<8 hex>."""
    return f"node-{os.getpid()}-{secrets.token_hex(4)}"


class ClusterBridge(ABC):
    """
    Dispatch facade shared by both bridge implementations.

    Subclasses only decide what publishing means.
    """

    backend: str = "none"

    def __init__(self, dispatcher: "LocalDispatcher", node_id: str | None = None) -> None:
        self._dispatcher = dispatcher
        self._node_id = node_id or generate_node_id()

        # Metrics
        self._published = 0
        self._publish_failures = 0
        self._received = 0
        self._own_echoes = 0
        self._invalid_envelopes = 0

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def dispatcher(self) -> "LocalDispatcher":
        return self._dispatcher

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether envelopes currently reach other nodes."""

    async def start(self) -> None:
        """Connect to the backplane. Never raises."""

    async def close(self) -> None:
        """Disconnect from the backplane. Never raises."""

    @abstractmethod
    async def _publish(self, envelope: ClusterEnvelope) -> None:
        """Send an envelope to the other nodes. May raise; the caller logs."""

    async def dispatch_to_all(self, event: dict[str, Any]) -> int:
        """
        Deliver to every local connection, then replicate cluster-wide.

        Returns:
            Local sends attempted.
        """
        sent = await self._dispatcher.dispatch_to_all(event)
        await self._publish_safely(ClusterEnvelope.for_all(self._node_id, event))
        return sent

    async def dispatch_to_users(self, user_ids: Iterable[Any], event: dict[str, Any]) -> int:
        """
        Deliver to the given users' local connections, then replicate.

        Returns:
            Local sends attempted.
        """
        ids = normalize_user_ids(user_ids)
        if not ids:
            return 0
        sent = await self._dispatcher.dispatch_to_users(ids, event)
        await self._publish_safely(ClusterEnvelope.for_users(self._node_id, ids, event))
        return sent

    async def handle_envelope(self, raw: str | bytes) -> int:
        """
        Deliver an envelope received from the backplane, local-only.

        Returns:
            Local sends attempted (0 for our own or invalid envelopes).
        """
        try:
            envelope = ClusterEnvelope.from_json(raw)
        except MalformedFrameError as e:
            self._invalid_envelopes += 1
            logger.warning("Dropping invalid cluster envelope", error=str(e))
            return 0

        if envelope.origin == self._node_id:
            # Already delivered locally when it was published
            self._own_echoes += 1
            return 0

        self._received += 1
        if envelope.target == ClusterTarget.ALL:
            return await self._dispatcher.dispatch_to_all(envelope.payload)
        return await self._dispatcher.dispatch_to_users(envelope.user_ids, envelope.payload)

    async def _publish_safely(self, envelope: ClusterEnvelope) -> None:
        # Backplane trouble is never surfaced to callers
        try:
            await self._publish(envelope)
        except Exception as e:
            self._publish_failures += 1
            logger.warning(
                "Cluster publish failed",
                backend=self.backend,
                target=envelope.target,
                error=str(e),
            )

    def get_status(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "node_id": self._node_id,
            "connected": self.is_connected,
            "published": self._published,
            "publish_failures": self._publish_failures,
            "received": self._received,
            "own_echoes_ignored": self._own_echoes,
            "invalid_envelopes": self._invalid_envelopes,
        }


class NullClusterBridge(ClusterBridge):
    """Single-process mode: dispatches stay local, publishing is a no-op."""

    backend = "none"

    @property
    def is_connected(self) -> bool:
        return False

    async def _publish(self, envelope: ClusterEnvelope) -> None:
        return None


class RedisClusterBridge(ClusterBridge):
    """
    Redis pub/sub backplane.

    Publishing goes through a circuit breaker and is skipped while Redis is
    unreachable. The subscriber reconnects with exponential backoff and
    jitter, and gives up after ``max_reconnect_attempts`` consecutive
    failures, leaving the node in single-process mode.
    """

    backend = "redis"

    def __init__(
        self,
        dispatcher: "LocalDispatcher",
        channel: str,
        node_id: str | None = None,
        client_factory: Callable[[], Awaitable["aioredis.Redis"]] = get_redis_pool,
        breaker: CircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
        cleanup_timeout: float = 5.0,
    ) -> None:
        """
        Args:
            dispatcher: Local delivery path.
            channel: Pub/sub channel shared by all nodes.
            node_id: Process identity (generated when omitted).
            client_factory: Coroutine returning the Redis client.
            breaker: Circuit breaker guarding publishes.
            retry_config: Subscriber reconnection policy.
            cleanup_timeout: Timeout for unsubscribe/close on shutdown.
        """
        super().__init__(dispatcher, node_id)
        self._channel = channel
        self._client_factory = client_factory
        self._breaker = breaker or CircuitBreaker(name="redis_cluster_publish")
        self._retry_config = retry_config or create_redis_retry_config(
            max_attempts=settings.redis_max_reconnect_attempts,
        )
        self._cleanup_timeout = cleanup_timeout

        self._client: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._subscriber_task: asyncio.Task | None = None
        self._ready = False
        self._closing = False
        self._reconnects = 0
        self._skipped_publishes = 0

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def is_connected(self) -> bool:
        return self._ready

    async def start(self) -> None:
        """Subscribe and start the listener task. Failure degrades, never raises."""
        try:
            await self._subscribe()
        except (redis.exceptions.RedisError, OSError, RuntimeError) as e:
            logger.warning(
                "Redis backplane unavailable, running single-process until it recovers",
                error=str(e),
            )
        self._subscriber_task = asyncio.create_task(
            self._run_subscriber(), name="cluster_subscriber"
        )

    async def _subscribe(self) -> None:
        self._client = await self._client_factory()
        await self._client.ping()
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self._channel)
        self._pubsub = pubsub
        self._ready = True
        logger.info("Cluster bridge subscribed", channel=self._channel, node_id=self.node_id)

    async def _publish(self, envelope: ClusterEnvelope) -> None:
        if not self._ready or self._client is None:
            self._skipped_publishes += 1
            return
        try:
            async with self._breaker:
                await self._client.publish(self._channel, envelope.to_json())
        except CircuitOpenError:
            self._skipped_publishes += 1
            return
        self._published += 1

    async def _run_subscriber(self) -> None:
        """Listen for envelopes until cancelled or out of reconnect attempts."""
        attempts = 0

        while not self._closing:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    attempts = 0

                msg = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if msg is None or msg.get("type") != "message":
                    continue

                try:
                    await self.handle_envelope(msg["data"])
                except Exception as e:
                    logger.error("Error delivering cluster envelope", error=str(e), exc_info=True)

            except asyncio.CancelledError:
                raise

            except redis.exceptions.TimeoutError:
                # Normal for pubsub - continue listening
                continue

            except (redis.exceptions.ConnectionError, OSError, RuntimeError) as e:
                self._ready = False
                await self._drop_pubsub()
                attempts += 1

                if attempts > self._retry_config.max_attempts:
                    logger.error(
                        "Cluster subscriber giving up, node stays single-process",
                        attempts=attempts,
                        error=str(e),
                    )
                    return

                delay = calculate_delay_with_jitter(attempts - 1, self._retry_config)
                self._reconnects += 1
                logger.warning(
                    "Redis backplane error, reconnecting with jitter",
                    error=str(e),
                    attempt=attempts,
                    max_attempts=self._retry_config.max_attempts,
                    delay=round(delay, 2),
                )
                await asyncio.sleep(delay)

    async def _drop_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await asyncio.wait_for(pubsub.unsubscribe(self._channel), timeout=self._cleanup_timeout)
        except Exception as e:
            logger.debug("Error during pubsub unsubscribe", error=str(e))
        try:
            await asyncio.wait_for(pubsub.aclose(), timeout=self._cleanup_timeout)
        except Exception as e:
            logger.debug("Error closing pubsub", error=str(e))

    async def close(self) -> None:
        self._closing = True
        self._ready = False

        if self._subscriber_task is not None:
            self._subscriber_task.cancel()
            try:
                await self._subscriber_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Cluster subscriber ended with error", error=str(e))
            self._subscriber_task = None

        await self._drop_pubsub()
        logger.info("Cluster bridge closed", node_id=self.node_id)

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status.update({
            "channel": self._channel,
            "skipped_publishes": self._skipped_publishes,
            "reconnects": self._reconnects,
            "circuit_breaker": self._breaker.get_stats(),
        })
        return status


def create_cluster_bridge(
    dispatcher: "LocalDispatcher",
    redis_url: str | None = None,
    channel: str | None = None,
) -> ClusterBridge:
    """Pick the bridge implementation from configuration."""
    url = settings.redis_url if redis_url is None else redis_url
    if not url.strip():
        logger.info("No REDIS_URL configured, running in single-process mode")
        return NullClusterBridge(dispatcher)

    async def client_factory() -> "aioredis.Redis":
        return await get_redis_pool(url)

    return RedisClusterBridge(
        dispatcher,
        channel=channel or settings.ws_cluster_channel,
        client_factory=client_factory,
        cleanup_timeout=settings.redis_pubsub_cleanup_timeout,
    )
