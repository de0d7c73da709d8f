"""
WebSocket endpoint handlers.
"""

from lovculator_ws.components.endpoints.realtime import RealtimeEndpoint

__all__ = ["RealtimeEndpoint"]
