"""
Data access components.

Read-only lookups against the web application's database.
"""

from lovculator_ws.components.data.participants import ConversationParticipantRepository
from lovculator_ws.components.data.session_store import (
    SessionStore,
    sign_session_id,
    unsign_session_cookie,
)

__all__ = [
    "ConversationParticipantRepository",
    "SessionStore",
    "sign_session_id",
    "unsign_session_cookie",
]
