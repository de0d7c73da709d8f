"""
Connection model and audit helpers.

A Connection wraps one accepted WebSocket together with the metadata the
gateway needs for bookkeeping (owner, liveness flag, origin) and for
consistent audit logging.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TYPE_CHECKING

from starlette.websockets import WebSocketState

from lovculator_shared.config.logging import audit_ws_connection, mask_address
from lovculator_ws.components.core.constants import WS_ENDPOINT

if TYPE_CHECKING:
    from fastapi import WebSocket


# Control characters, zero-width marks and bidi overrides
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'
    r'\u200b-\u200f'
    r'\u202a-\u202e'
    r'\u2066-\u2069'
    r'\ufeff]'
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Sanitize client-provided data before logging.

    Truncates first so the output length does not depend on escaping, then
    strips control/direction characters and escapes quotes and backslashes.

    Args:
        data: Raw client data.
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    was_truncated = len(data) > max_length
    sanitized = _CONTROL_CHAR_PATTERN.sub("", data[:max_length])
    sanitized = sanitized.replace("\\", "\\\\").replace('"', '\\"')
    return sanitized + "..." if was_truncated else sanitized


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format like JavaScript's Date.toISOString() (ms precision, Z suffix)."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if a WebSocket is open in both directions before sending.

    Starlette only exposes CONNECTING / CONNECTED / DISCONNECTED, so a
    connection may still look connected briefly after the peer went away;
    callers must still expect the send itself to fail.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


def get_client_address(ws: "WebSocket", trust_proxy_headers: bool = False) -> str | None:
    """
    Origin address of the upgrade request.

    With trust_proxy_headers the first X-Forwarded-For hop wins; only enable
    it behind a proxy that overwrites the header.
    """
    if trust_proxy_headers:
        forwarded = ws.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip() or None
    client = ws.client
    return client.host if client else None


@dataclass(eq=False)
class Connection:
    """
    One live WebSocket owned by an authenticated user.

    Identity-hashed so it can live in sets. ``is_alive`` is the heartbeat
    flag: cleared when a probe is sent, set again by any inbound frame.
    ``closed`` flips exactly once, when the close path runs.

    Usage:
        conn = Connection.from_websocket(websocket, user_id=7, address="203.0.113.9")
        conn.audit("CONNECT")
        # ... later
        conn.audit("DISCONNECT", reason="client_disconnect")
    """

    websocket: "WebSocket"
    user_id: int
    address: str | None = None
    origin: str | None = None
    user_agent: str | None = None
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    connected_at: datetime = field(default_factory=utc_now)
    is_alive: bool = True
    closed: bool = False

    @classmethod
    def from_websocket(
        cls,
        websocket: "WebSocket",
        user_id: int,
        address: str | None = None,
    ) -> "Connection":
        """Create a connection from the upgrade request's headers."""
        return cls(
            websocket=websocket,
            user_id=user_id,
            address=address,
            origin=websocket.headers.get("origin"),
            user_agent=websocket.headers.get("user-agent"),
        )

    @property
    def is_open(self) -> bool:
        """True while the close path has not run and the socket is connected."""
        return not self.closed and is_ws_connected(self.websocket)

    def to_audit_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "connection_id": self.connection_id,
            "origin": self.origin,
            "ip_address": mask_address(self.address),
        }

    def to_debug_dict(self) -> dict[str, Any]:
        """Snapshot returned to the owner in DEBUG_RESPONSE frames."""
        return {
            "connectionId": self.connection_id,
            "connectedAt": to_iso(self.connected_at),
            "isAlive": self.is_alive,
            "userAgent": sanitize_log_data(self.user_agent or "", max_length=200),
        }

    def audit(self, event_type: str, reason: str | None = None, **extra: Any) -> None:
        """Write a security audit entry for this connection."""
        data = self.to_audit_dict()
        audit_ws_connection(
            event_type=event_type,
            endpoint=WS_ENDPOINT,
            user_id=data.pop("user_id"),
            origin=data.pop("origin"),
            reason=reason,
            **data,
            **extra,
        )

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id} user={self.user_id} closed={self.closed}>"
