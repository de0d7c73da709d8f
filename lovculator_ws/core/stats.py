"""
Connection Statistics.

Process-wide counters read by the health, status and metrics endpoints.
Only the lifecycle coordinator and the endpoint loop write to them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from lovculator_ws.components.core.context import to_iso, utc_now


@dataclass
class ConnectionStats:
    """Counters since process start."""

    total_connections: int = 0
    active_connections: int = 0
    peak_connections: int = 0
    total_messages: int = 0
    rejected_rate_limited: int = 0
    rejected_unauthorized: int = 0
    terminated_dead: int = 0
    started_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.started_at is None:
            self.started_at = utc_now()

    def connection_opened(self) -> None:
        self.total_connections += 1
        self.active_connections += 1
        if self.active_connections > self.peak_connections:
            self.peak_connections = self.active_connections

    def connection_closed(self) -> None:
        self.active_connections = max(0, self.active_connections - 1)

    def message_received(self) -> None:
        self.total_messages += 1

    @property
    def uptime_seconds(self) -> float:
        return (utc_now() - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = to_iso(self.started_at)
        data["uptime_seconds"] = round(self.uptime_seconds, 1)
        return data
