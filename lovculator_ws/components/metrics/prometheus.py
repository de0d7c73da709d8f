"""
Prometheus Metrics Export for the WebSocket Gateway.

Formats the manager's status snapshot in the Prometheus text exposition
format. No client library: the gateway only exposes a handful of gauges
and counters, all already held by the components.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from lovculator_ws.connection_manager import ConnectionManager


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricDefinition:
    """A metric and where its value lives in the status snapshot."""

    name: str
    help_text: str
    metric_type: MetricType
    path: tuple[str, ...]
    labels: tuple[tuple[str, str], ...] = ()


def _m(name: str, help_text: str, metric_type: MetricType, *path: str, **labels: str) -> MetricDefinition:
    return MetricDefinition(
        name=f"lovculator_ws_{name}",
        help_text=help_text,
        metric_type=metric_type,
        path=path,
        labels=tuple(labels.items()),
    )


GAUGE = MetricType.GAUGE
COUNTER = MetricType.COUNTER

METRIC_DEFINITIONS: list[MetricDefinition] = [
    # Connections
    _m("connections_active", "Currently open WebSocket connections", GAUGE, "connections", "active_connections"),
    _m("connections_peak", "Highest number of simultaneous connections", GAUGE, "connections", "peak_connections"),
    _m("connections_accepted_total", "Connections accepted since start", COUNTER, "connections", "total_connections"),
    _m("messages_received_total", "Inbound frames received", COUNTER, "connections", "total_messages"),
    _m("connections_rejected_total", "Rejected upgrade attempts", COUNTER,
       "connections", "rejected_rate_limited", reason="rate_limited"),
    _m("connections_rejected_total", "Rejected upgrade attempts", COUNTER,
       "connections", "rejected_unauthorized", reason="unauthorized"),
    _m("connections_terminated_total", "Connections terminated by the heartbeat monitor", COUNTER,
       "connections", "terminated_dead"),

    # Presence
    _m("users_connected", "Users with at least one open connection", GAUGE, "registry", "users"),
    _m("users_online", "Users currently online", GAUGE, "presence", "online_users"),

    # Dispatch
    _m("dispatch_events_total", "Events dispatched locally", COUNTER, "dispatcher", "events_dispatched"),
    _m("dispatch_sends_total", "Sends attempted", COUNTER, "dispatcher", "sends_attempted"),
    _m("dispatch_sends_failed_total", "Sends that failed", COUNTER, "dispatcher", "sends_failed"),

    # Inbound frames
    _m("frames_malformed_total", "Inbound frames dropped as malformed", COUNTER, "router", "frames_malformed"),
    _m("frames_unknown_total", "Inbound frames with an unknown type", COUNTER, "router", "frames_unknown"),

    # Rate limiter / heartbeat
    _m("rate_limiter_tracked_addresses", "Addresses holding a rate-limit window", GAUGE,
       "rate_limiter", "tracked_addresses"),
    _m("heartbeat_tracked_connections", "Connections probed by the heartbeat monitor", GAUGE,
       "heartbeat", "tracked_connections"),
    _m("heartbeat_interval_seconds", "Heartbeat probe interval", GAUGE, "heartbeat", "interval_seconds"),

    # Backplane
    _m("backplane_connected", "1 if the cluster backplane is connected", GAUGE, "backplane", "connected"),
    _m("backplane_published_total", "Envelopes published to the backplane", COUNTER, "backplane", "published"),
    _m("backplane_publish_failures_total", "Backplane publish failures", COUNTER, "backplane", "publish_failures"),
    _m("backplane_received_total", "Envelopes received from other nodes", COUNTER, "backplane", "received"),
]


def _lookup(status: dict[str, Any], path: tuple[str, ...]) -> float | int:
    value: Any = status
    for key in path:
        if not isinstance(value, dict):
            return 0
        value = value.get(key, 0)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    return 0


class PrometheusFormatter:
    """
    Formats metrics in Prometheus text exposition format.

    Reference: https://prometheus.io/docs/instrumenting/exposition_formats/

    Usage:
        formatter = PrometheusFormatter()
        output = formatter.format_all_metrics(manager.get_status())
    """

    def __init__(self, definitions: list[MetricDefinition] | None = None):
        self._definitions = definitions or METRIC_DEFINITIONS

    @staticmethod
    def format_sample(name: str, value: float | int, labels: tuple[tuple[str, str], ...] = ()) -> str:
        if labels:
            label_str = ",".join(f'{k}="{v}"' for k, v in labels)
            return f"{name}{{{label_str}}} {value}"
        return f"{name} {value}"

    def format_all_metrics(self, status: dict[str, Any], node_id: str | None = None) -> str:
        """
        Args:
            status: Snapshot from ConnectionManager.get_status().
            node_id: Added as a ``node`` label to every sample.

        Returns:
            Complete exposition text, newline terminated.
        """
        lines: list[str] = []
        described: set[str] = set()

        for definition in self._definitions:
            # HELP/TYPE once per metric family
            if definition.name not in described:
                described.add(definition.name)
                lines.append(f"# HELP {definition.name} {definition.help_text}")
                lines.append(f"# TYPE {definition.name} {definition.metric_type.value}")

            labels = definition.labels
            if node_id:
                labels = (("node", node_id),) + labels
            lines.append(self.format_sample(definition.name, _lookup(status, definition.path), labels))

        lines.append("# HELP lovculator_ws_scrape_timestamp Timestamp of metrics scrape")
        lines.append("# TYPE lovculator_ws_scrape_timestamp gauge")
        lines.append(f"lovculator_ws_scrape_timestamp {int(time.time())}")
        return "\n".join(lines) + "\n"


def generate_prometheus_metrics(manager: "ConnectionManager") -> str:
    """Exposition text for the manager's current state."""
    return PrometheusFormatter().format_all_metrics(manager.get_status(), node_id=manager.node_id)
