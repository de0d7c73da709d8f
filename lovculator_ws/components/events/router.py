"""
Event Router - Handles frames received from clients.

Each inbound frame is decoded once into its typed variant and handled by
the matching method. Malformed frames and unknown types are logged and
dropped; neither closes the connection.

Usage:
    router = EventRouter(bridge, presence, participants, heartbeat, announcer)
    result = await router.route(connection, raw_text)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, TYPE_CHECKING

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings
from lovculator_ws.components.broadcast.presence import PresenceAnnouncer
from lovculator_ws.components.core.context import sanitize_log_data
from lovculator_ws.components.events.types import (
    DebugRequestFrame,
    MalformedFrameError,
    MessageSeenFrame,
    PongFrame,
    PresenceUpdateFrame,
    TypingFrame,
    UnknownFrame,
    debug_response_event,
    message_seen_event,
    parse_inbound_frame,
    typing_event,
)

if TYPE_CHECKING:
    from lovculator_ws.components.cluster.bridge import ClusterBridge
    from lovculator_ws.components.connection.heartbeat import HeartbeatMonitor
    from lovculator_ws.components.connection.presence import PresenceTracker
    from lovculator_ws.components.core.context import Connection
    from lovculator_ws.components.data.participants import ConversationParticipantRepository

logger = get_logger(__name__)


@dataclass
class RoutingResult:
    """Outcome of handling one inbound frame."""

    frame_type: str | None = None
    sent: int = 0
    dropped: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return not self.dropped and self.error is None


class EventRouter:
    """
    Routes inbound frames.

    Frame handling:
    - TYPING: relayed to toUserId, or to every other participant of
      conversationId when no target is given
    - MESSAGE_SEEN: relayed to toUserId with the reader as fromUserId
    - PRESENCE_UPDATE: refreshes last-seen and re-announces the sender online
    - PONG: liveness only
    - DEBUG_REQUEST: connection snapshot back to the sender, when enabled
    """

    def __init__(
        self,
        bridge: "ClusterBridge",
        presence: "PresenceTracker",
        participants: "ConversationParticipantRepository",
        heartbeat: "HeartbeatMonitor | None" = None,
        announcer: PresenceAnnouncer | None = None,
        debug_enabled: bool | None = None,
        socket_count: Callable[[int], int] | None = None,
    ) -> None:
        """
        Args:
            bridge: Dispatch path (local + cluster).
            presence: Presence tracker for PRESENCE_UPDATE and debug snapshots.
            participants: Conversation membership lookups for TYPING.
            heartbeat: Marks the sender alive on every frame.
            announcer: Presence broadcaster shared with the lifecycle.
            debug_enabled: Answer DEBUG_REQUEST (defaults to settings).
            socket_count: Open sockets of a user, for debug snapshots.
        """
        self._bridge = bridge
        self._presence = presence
        self._participants = participants
        self._heartbeat = heartbeat
        self._announcer = announcer or PresenceAnnouncer(bridge)
        self._debug_enabled = (
            settings.ws_debug_requests_enabled if debug_enabled is None else debug_enabled
        )
        self._socket_count = socket_count

        self._routed = 0
        self._malformed = 0
        self._unknown = 0

    async def route(self, connection: "Connection", raw: str | bytes) -> RoutingResult:
        """Decode and handle one frame from ``connection``."""
        # Any frame proves the peer is there
        if self._heartbeat is not None:
            self._heartbeat.mark_alive(connection)
        else:
            connection.is_alive = True

        try:
            frame = parse_inbound_frame(raw)
        except MalformedFrameError as e:
            self._malformed += 1
            logger.debug(
                "Dropping malformed frame",
                connection_id=connection.connection_id,
                error=sanitize_log_data(str(e)),
            )
            return RoutingResult(dropped=True, error=str(e))

        self._routed += 1

        if isinstance(frame, TypingFrame):
            sent = await self._handle_typing(connection, frame)
        elif isinstance(frame, MessageSeenFrame):
            sent = await self._handle_message_seen(connection, frame)
        elif isinstance(frame, PresenceUpdateFrame):
            sent = await self._handle_presence_update(connection)
        elif isinstance(frame, PongFrame):
            sent = 0
        elif isinstance(frame, DebugRequestFrame):
            sent = await self._handle_debug_request(connection)
        else:
            self._unknown += 1
            logger.debug(
                "Ignoring unknown frame type",
                connection_id=connection.connection_id,
                frame_type=sanitize_log_data(frame.type, max_length=50),
            )
            return RoutingResult(frame_type=frame.type, dropped=True)

        return RoutingResult(frame_type=frame.type, sent=sent)

    async def _handle_typing(self, connection: "Connection", frame: TypingFrame) -> int:
        if frame.to_user_id is not None:
            recipients = [frame.to_user_id]
        elif frame.conversation_id is not None:
            recipients = await self._participants.get_other_participants(
                frame.conversation_id, connection.user_id
            )
        else:
            logger.debug("TYPING frame without target", connection_id=connection.connection_id)
            return 0

        recipients = [r for r in recipients if r != connection.user_id]
        if not recipients:
            return 0

        event = typing_event(
            from_user_id=connection.user_id,
            conversation_id=frame.conversation_id,
            is_typing=frame.is_typing,
            timestamp=frame.timestamp,
        )
        return await self._bridge.dispatch_to_users(recipients, event)

    async def _handle_message_seen(self, connection: "Connection", frame: MessageSeenFrame) -> int:
        if frame.to_user_id == connection.user_id:
            return 0
        event = message_seen_event(
            frame.conversation_id,
            frame.message_ids,
            from_user_id=connection.user_id,
        )
        return await self._bridge.dispatch_to_users([frame.to_user_id], event)

    async def _handle_presence_update(self, connection: "Connection") -> int:
        record = self._presence.touch(connection.user_id)
        if record is None or not record.is_online:
            return 0
        return await self._announcer.announce(record)

    async def _handle_debug_request(self, connection: "Connection") -> int:
        if not self._debug_enabled:
            logger.debug("DEBUG_REQUEST ignored (disabled)", connection_id=connection.connection_id)
            return 0

        record = self._presence.get(connection.user_id)
        snapshot: dict[str, Any] = {
            "userId": connection.user_id,
            "nodeId": self._bridge.node_id,
            **connection.to_debug_dict(),
            "sockets": self._socket_count(connection.user_id) if self._socket_count else None,
            "presence": record.to_dict() if record else None,
            "backplane": {
                "backend": self._bridge.backend,
                "connected": self._bridge.is_connected,
            },
        }
        sent = await self._bridge.dispatcher.send(connection, debug_response_event(snapshot))
        return 1 if sent else 0

    def get_stats(self) -> dict[str, int]:
        return {
            "frames_routed": self._routed,
            "frames_malformed": self._malformed,
            "frames_unknown": self._unknown,
        }
