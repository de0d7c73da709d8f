"""
Infrastructure module: Redis pool, database access, request correlation.
"""

from lovculator_shared.infrastructure.redis_pool import (
    get_redis_pool,
    close_redis_pool,
    check_redis_async_health,
)
from lovculator_shared.infrastructure.db import get_session_factory, dispose_engine

__all__ = [
    "get_redis_pool",
    "close_redis_pool",
    "check_redis_async_health",
    "get_session_factory",
    "dispose_engine",
]
