"""
Metrics and observability components.
"""

from lovculator_ws.components.metrics.prometheus import (
    MetricDefinition,
    MetricType,
    PrometheusFormatter,
    generate_prometheus_metrics,
)

__all__ = [
    "MetricDefinition",
    "MetricType",
    "PrometheusFormatter",
    "generate_prometheus_metrics",
]
