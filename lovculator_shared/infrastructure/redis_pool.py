"""
Redis Connection Pool Management.

A single async pool per process, created lazily on first use. Only touched
when REDIS_URL is configured; single-process deployments never import a
connection.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import redis.asyncio as redis

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings

logger = get_logger(__name__)


_redis_pool: redis.Redis | None = None
_redis_pool_lock: asyncio.Lock | None = None
_pool_lock_init = threading.Lock()


def _get_pool_lock() -> asyncio.Lock:
    """
    Get or create the pool lock (lazy initialization for event loop safety).

    Double-checked under a threading.Lock so concurrent first calls cannot
    create two different asyncio.Lock instances.
    """
    global _redis_pool_lock
    if _redis_pool_lock is None:
        with _pool_lock_init:
            if _redis_pool_lock is None:
                _redis_pool_lock = asyncio.Lock()
    return _redis_pool_lock


async def get_redis_pool(url: str | None = None) -> redis.Redis:
    """
    Get or create the Redis connection pool singleton.

    Args:
        url: Redis URL; defaults to settings.redis_url.

    Raises:
        RuntimeError: If no Redis URL is configured.
    """
    global _redis_pool

    if _redis_pool is not None:
        return _redis_pool

    redis_url = url or settings.redis_url
    if not redis_url:
        raise RuntimeError("Redis is not configured (REDIS_URL is empty)")

    async with _get_pool_lock():
        if _redis_pool is None:
            _redis_pool = redis.from_url(
                redis_url,
                max_connections=settings.redis_pool_max_connections,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
                health_check_interval=30,
            )
            logger.info(
                "Redis async pool initialized",
                max_connections=settings.redis_pool_max_connections,
                timeout=settings.redis_socket_timeout,
            )
    return _redis_pool


async def check_redis_async_health() -> dict[str, Any]:
    """Ping the pool and report latency. Never raises."""
    if not settings.redis_url:
        return {"status": "disabled"}

    start = time.perf_counter()
    try:
        pool = await get_redis_pool()
        await asyncio.wait_for(pool.ping(), timeout=settings.redis_socket_timeout)
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - start) * 1000, 2),
    }


async def close_redis_pool() -> None:
    """Close the Redis pool on application shutdown."""
    global _redis_pool, _redis_pool_lock

    if _redis_pool is not None:
        try:
            await _redis_pool.aclose()
            logger.info("Redis async pool closed")
        except Exception as e:
            logger.warning("Error closing Redis pool", error=str(e))
        finally:
            _redis_pool = None
    _redis_pool_lock = None
