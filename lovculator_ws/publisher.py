"""
Realtime Publisher - the API route handlers use to push live events.

Handlers receive the publisher through dependency injection instead of
looking a broadcaster up by name:

    @router.post("/messages")
    async def send_message(..., publisher: RealtimePublisher = Depends(get_publisher)):
        saved = save_message(...)
        await publisher.broadcast_new_message(saved, recipients=[saved["receiver_id"]])

Every method goes through the cluster bridge, so a process holding no
sockets still reaches every gateway node when a backplane is configured.
Delivery is fire-and-forget: each call returns the number of local
connections the event was attempted on and never raises on delivery
failures.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, TYPE_CHECKING

from fastapi import Request

from lovculator_shared.config.logging import get_logger
from lovculator_ws.components.events.types import (
    like_update_event,
    message_deleted_event,
    message_edited_event,
    message_seen_event,
    new_comment_event,
    new_message_event,
    notification_event,
    typing_event,
)

if TYPE_CHECKING:
    from lovculator_ws.components.cluster.bridge import ClusterBridge

logger = get_logger(__name__)


class RealtimePublisher:
    """Typed broadcast entry points over a ClusterBridge."""

    def __init__(self, bridge: "ClusterBridge") -> None:
        self._bridge = bridge

    @property
    def bridge(self) -> "ClusterBridge":
        return self._bridge

    async def broadcast_new_message(self, message: dict[str, Any], recipients: Iterable[Any]) -> int:
        return await self._bridge.dispatch_to_users(recipients, new_message_event(message))

    async def broadcast_edited_message(self, message: dict[str, Any], recipients: Iterable[Any]) -> int:
        return await self._bridge.dispatch_to_users(recipients, message_edited_event(message))

    async def broadcast_deleted_message(
        self,
        message_id: Any,
        recipients: Iterable[Any],
        conversation_id: Any = None,
    ) -> int:
        return await self._bridge.dispatch_to_users(
            recipients, message_deleted_event(message_id, conversation_id)
        )

    async def broadcast_seen(
        self,
        conversation_id: Any,
        message_ids: Iterable[Any],
        to_user_id: Any,
    ) -> int:
        """Seen receipt for the sender of ``message_ids``."""
        return await self._bridge.dispatch_to_users(
            [to_user_id], message_seen_event(conversation_id, list(message_ids))
        )

    async def broadcast_notification(
        self,
        notification: dict[str, Any],
        recipients: Iterable[Any],
    ) -> int:
        return await self._bridge.dispatch_to_users(recipients, notification_event(notification))

    async def broadcast_like(self, post_id: Any, like_count: int) -> int:
        """Like counter update, to everyone."""
        return await self._bridge.dispatch_to_all(like_update_event(post_id, like_count))

    async def broadcast_comment(self, data: dict[str, Any]) -> int:
        """New comment, to everyone."""
        return await self._bridge.dispatch_to_all(new_comment_event(data))

    async def broadcast_typing(self, data: dict[str, Any], recipients: Iterable[Any]) -> int:
        """
        Typing indicator initiated over HTTP.

        ``data`` uses the frame's field names: fromUserId, conversationId,
        isTyping and an optional timestamp.
        """
        from_user_id = data.get("fromUserId")
        if from_user_id is None:
            logger.warning("Typing broadcast without fromUserId")
            return 0
        event = typing_event(
            from_user_id=from_user_id,
            conversation_id=data.get("conversationId"),
            is_typing=bool(data.get("isTyping", True)),
            timestamp=data.get("timestamp"),
        )
        return await self._bridge.dispatch_to_users(recipients, event)


def get_publisher(request: Request) -> RealtimePublisher:
    """FastAPI dependency returning the application's publisher."""
    return request.app.state.publisher
