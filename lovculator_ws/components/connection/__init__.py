"""
Connection management components.

Registry, presence derivation, heartbeat probing and upgrade rate limiting.
"""

from lovculator_ws.components.connection.registry import ConnectionRegistry
from lovculator_ws.components.connection.presence import PresenceRecord, PresenceTracker
from lovculator_ws.components.connection.heartbeat import HeartbeatMonitor
from lovculator_ws.components.connection.rate_limiter import ConnectionRateLimiter

__all__ = [
    "ConnectionRegistry",
    "PresenceRecord",
    "PresenceTracker",
    "HeartbeatMonitor",
    "ConnectionRateLimiter",
]
