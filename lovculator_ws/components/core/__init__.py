"""
Core WebSocket Gateway components.

Foundational components: constants and the connection model.
"""

from lovculator_ws.components.core.constants import (
    WSCloseCode,
    WSConstants,
    FrameType,
    ClusterTarget,
    DEFAULT_ALLOWED_ORIGINS,
    WS_ENDPOINT,
)
from lovculator_ws.components.core.context import (
    Connection,
    get_client_address,
    is_ws_connected,
    sanitize_log_data,
)

__all__ = [
    # Constants
    "WSCloseCode",
    "WSConstants",
    "FrameType",
    "ClusterTarget",
    "DEFAULT_ALLOWED_ORIGINS",
    "WS_ENDPOINT",
    # Context
    "Connection",
    "get_client_address",
    "is_ws_connected",
    "sanitize_log_data",
]
