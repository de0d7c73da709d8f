"""
Event handling components.

Frame types and decoding. The inbound event router lives in
``events.router``.
"""

from lovculator_ws.components.events.types import (
    ClusterEnvelope,
    InboundFrame,
    MalformedFrameError,
    UnknownFrame,
    parse_inbound_frame,
)

__all__ = [
    "ClusterEnvelope",
    "InboundFrame",
    "MalformedFrameError",
    "UnknownFrame",
    "parse_inbound_frame",
]
