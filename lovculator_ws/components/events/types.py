"""
Frame types for the realtime WebSocket protocol.

Inbound frames are decoded once, at the boundary, into a discriminated
union keyed on ``type``. Unrecognized types decode to UnknownFrame (an
explicit variant, logged and ignored by the router); anything that is not
a JSON object with a string ``type`` raises MalformedFrameError.

Outbound frames are plain dicts built by the ``*_event`` functions so every
producer emits the same field names.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from lovculator_ws.components.core.constants import ClusterTarget, FrameType
from lovculator_ws.components.core.context import to_iso, utc_now


class MalformedFrameError(ValueError):
    """Inbound data is not a valid frame. Dropped without closing the connection."""


# =============================================================================
# Inbound frames (client -> server)
# =============================================================================


class _InboundFrame(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class TypingFrame(_InboundFrame):
    """Typing indicator. Relayed to toUserId, or to the conversation's other participants."""

    type: Literal["TYPING"]
    to_user_id: int | None = Field(default=None, alias="toUserId")
    conversation_id: int | None = Field(default=None, alias="conversationId")
    is_typing: bool = Field(default=True, alias="isTyping")
    timestamp: str | int | None = None


class MessageSeenFrame(_InboundFrame):
    """Seen receipt, relayed to the sender of the messages."""

    type: Literal["MESSAGE_SEEN"]
    conversation_id: int = Field(alias="conversationId")
    message_ids: list[int] = Field(default_factory=list, alias="messageIds")
    to_user_id: int = Field(alias="toUserId")
    timestamp: str | int | None = None


class PresenceUpdateFrame(_InboundFrame):
    type: Literal["PRESENCE_UPDATE"]


class PongFrame(_InboundFrame):
    type: Literal["PONG"]


class DebugRequestFrame(_InboundFrame):
    type: Literal["DEBUG_REQUEST"]


@dataclass(frozen=True)
class UnknownFrame:
    """A well-formed frame whose type this server does not know."""

    type: str
    fields: dict[str, Any] = field(default_factory=dict)


KnownFrame = Annotated[
    Union[TypingFrame, MessageSeenFrame, PresenceUpdateFrame, PongFrame, DebugRequestFrame],
    Field(discriminator="type"),
]

InboundFrame = Union[TypingFrame, MessageSeenFrame, PresenceUpdateFrame, PongFrame, DebugRequestFrame, UnknownFrame]

KNOWN_INBOUND_TYPES: frozenset[str] = frozenset({
    FrameType.TYPING,
    FrameType.MESSAGE_SEEN,
    FrameType.PRESENCE_UPDATE,
    FrameType.PONG,
    FrameType.DEBUG_REQUEST,
})

_known_frame_adapter: TypeAdapter[Any] = TypeAdapter(KnownFrame)


def parse_inbound_frame(raw: str | bytes) -> InboundFrame:
    """
    Decode one inbound frame.

    Raises:
        MalformedFrameError: Not JSON, not an object, no string ``type``,
            or a known type with invalid fields.
    """
    try:
        data = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise MalformedFrameError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrameError("frame is not a JSON object")

    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise MalformedFrameError("frame has no type")

    if frame_type not in KNOWN_INBOUND_TYPES:
        return UnknownFrame(type=frame_type, fields={k: v for k, v in data.items() if k != "type"})

    try:
        return _known_frame_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedFrameError(
            f"invalid {frame_type} frame: {e.error_count()} error(s)"
        ) from e


# =============================================================================
# Outbound frames (server -> client)
# =============================================================================


def now_iso() -> str:
    return to_iso(utc_now())


def ping_event() -> dict[str, Any]:
    return {"type": FrameType.PING, "timestamp": now_iso()}


def presence_event(user_id: int, is_online: bool, last_seen: str | None) -> dict[str, Any]:
    return {
        "type": FrameType.PRESENCE,
        "userId": user_id,
        "isOnline": is_online,
        "lastSeen": last_seen,
        "timestamp": now_iso(),
    }


def presence_initial_event(users: list[dict[str, Any]]) -> dict[str, Any]:
    return {"type": FrameType.PRESENCE_INITIAL, "users": users}


def typing_event(
    from_user_id: int,
    conversation_id: int | None,
    is_typing: bool,
    timestamp: str | int | None = None,
) -> dict[str, Any]:
    return {
        "type": FrameType.TYPING,
        "conversationId": conversation_id,
        "isTyping": is_typing,
        "fromUserId": from_user_id,
        "timestamp": timestamp if timestamp is not None else now_iso(),
    }


def message_seen_event(
    conversation_id: Any,
    message_ids: list[Any],
    from_user_id: int | None = None,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "type": FrameType.MESSAGE_SEEN,
        "conversationId": conversation_id,
        "messageIds": list(message_ids),
        "seenAt": now_iso(),
    }
    if from_user_id is not None:
        event["fromUserId"] = from_user_id
    return event


def new_message_event(message: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": FrameType.NEW_MESSAGE,
        "message": message,
        "conversationId": message.get("conversation_id"),
    }


def message_edited_event(message: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": FrameType.MESSAGE_EDITED,
        "message": message,
        "conversationId": message.get("conversation_id"),
    }


def message_deleted_event(message_id: Any, conversation_id: Any = None) -> dict[str, Any]:
    return {
        "type": FrameType.MESSAGE_DELETED,
        "messageId": message_id,
        "conversationId": conversation_id,
    }


def notification_event(notification: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": FrameType.NEW_NOTIFICATION,
        "notification": notification,
        "timestamp": now_iso(),
    }


def like_update_event(post_id: Any, like_count: int) -> dict[str, Any]:
    return {"type": FrameType.LIKE_UPDATE, "postId": post_id, "like_count": like_count}


def new_comment_event(data: dict[str, Any]) -> dict[str, Any]:
    return {"type": FrameType.NEW_COMMENT, "data": data}


def server_shutdown_event(message: str, reconnect_delay_ms: int) -> dict[str, Any]:
    return {
        "type": FrameType.SERVER_SHUTDOWN,
        "message": message,
        "reconnectDelay": reconnect_delay_ms,
    }


def debug_response_event(snapshot: dict[str, Any]) -> dict[str, Any]:
    return {"type": FrameType.DEBUG_RESPONSE, **snapshot, "timestamp": now_iso()}


# =============================================================================
# Cluster envelope (node -> backplane -> node)
# =============================================================================


class ClusterEnvelope(BaseModel):
    """
    A dispatch replicated through the backplane.

    Wire format:
        {"target": "ALL" | "USERS", "origin": "<node id>",
         "userIds": [...], "payload": {...}}
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    target: Literal["ALL", "USERS"]
    origin: str = Field(min_length=1)
    user_ids: list[int] = Field(default_factory=list, alias="userIds")
    payload: dict[str, Any]

    @classmethod
    def for_all(cls, origin: str, payload: dict[str, Any]) -> "ClusterEnvelope":
        return cls(target=ClusterTarget.ALL, origin=origin, payload=payload)

    @classmethod
    def for_users(cls, origin: str, user_ids: list[int], payload: dict[str, Any]) -> "ClusterEnvelope":
        return cls(target=ClusterTarget.USERS, origin=origin, user_ids=user_ids, payload=payload)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ClusterEnvelope":
        """
        Raises:
            MalformedFrameError: If the data is not a valid envelope.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedFrameError(f"invalid cluster envelope: {e.error_count()} error(s)") from e
