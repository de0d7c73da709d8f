"""
Broadcasting components.

Local delivery to the connections held by this process, and per-user
ordered presence announcements.
"""

from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher, normalize_user_ids
from lovculator_ws.components.broadcast.presence import PresenceAnnouncer

__all__ = ["LocalDispatcher", "PresenceAnnouncer", "normalize_user_ids"]
