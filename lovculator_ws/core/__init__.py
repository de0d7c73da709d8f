"""
Gateway core.

- lifecycle.py: admission, close path and graceful shutdown
- stats.py: process-wide connection counters
- errors.py: event loop error policy
"""

from lovculator_ws.core.errors import install_fatal_error_handler
from lovculator_ws.core.lifecycle import ConnectionLifecycle
from lovculator_ws.core.stats import ConnectionStats

__all__ = [
    "ConnectionLifecycle",
    "ConnectionStats",
    "install_fatal_error_handler",
]
