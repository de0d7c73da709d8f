"""
WebSocket Gateway Constants.

Centralized constants with the rationale for each value. Values that
operators tune live in settings; these are the defaults and the fixed
protocol vocabulary.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "FrameType",
    "ClusterTarget",
    "DEFAULT_ALLOWED_ORIGINS",
    "WS_ENDPOINT",
]


WS_ENDPOINT: Final[str] = "/ws"


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) mirror the HTTP status the upgrade would have
    received, for servers without the denial-response extension.
    """

    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down
    MESSAGE_TOO_BIG = 1009  # Inbound frame above ws_max_message_size
    SERVER_OVERLOADED = 1013  # Shutting down, try again later

    AUTH_FAILED = 4001  # No valid session (HTTP 401)
    FORBIDDEN = 4003  # Valid session, access denied (HTTP 403)
    RATE_LIMITED = 4029  # Too many upgrade attempts (HTTP 429)
    HEARTBEAT_TIMEOUT = 4408  # No frame for a full probe interval


class FrameType:
    """Values of the ``type`` field in JSON frames."""

    # Inbound (client -> server)
    TYPING: Final[str] = "TYPING"
    MESSAGE_SEEN: Final[str] = "MESSAGE_SEEN"
    PRESENCE_UPDATE: Final[str] = "PRESENCE_UPDATE"
    PONG: Final[str] = "PONG"
    DEBUG_REQUEST: Final[str] = "DEBUG_REQUEST"

    # Outbound (server -> client)
    PING: Final[str] = "PING"
    PRESENCE: Final[str] = "PRESENCE"
    PRESENCE_INITIAL: Final[str] = "PRESENCE_INITIAL"
    NEW_MESSAGE: Final[str] = "NEW_MESSAGE"
    MESSAGE_EDITED: Final[str] = "MESSAGE_EDITED"
    MESSAGE_DELETED: Final[str] = "MESSAGE_DELETED"
    NEW_NOTIFICATION: Final[str] = "NEW_NOTIFICATION"
    LIKE_UPDATE: Final[str] = "LIKE_UPDATE"
    NEW_COMMENT: Final[str] = "NEW_COMMENT"
    SERVER_SHUTDOWN: Final[str] = "SERVER_SHUTDOWN"
    DEBUG_RESPONSE: Final[str] = "DEBUG_RESPONSE"


class ClusterTarget:
    """Targets a cluster envelope can address."""

    ALL: Final[str] = "ALL"
    USERS: Final[str] = "USERS"


class WSConstants:
    """
    WebSocket Gateway operational constants.

    Each constant is documented with the rationale for its value.
    """

    # WS_ACCEPT_TIMEOUT: 5 seconds
    # Rationale: the handshake should complete well within TCP timeouts;
    # stuck upgrades must not hold a registry slot.
    WS_ACCEPT_TIMEOUT: Final[float] = 5.0

    # DB_LOOKUP_TIMEOUT: 2 seconds
    # Rationale: session and participant lookups are single indexed reads
    # (<10ms typical). Beyond 2s the database is in trouble and the upgrade
    # or typing relay is better dropped than left waiting.
    DB_LOOKUP_TIMEOUT: Final[float] = 2.0

    # SEND_TIMEOUT: 5 seconds
    # Rationale: a send that cannot be flushed in 5s belongs to a peer whose
    # TCP window is full; treat it as failed and let the heartbeat reap it.
    SEND_TIMEOUT: Final[float] = 5.0

    # MAX_INITIAL_PRESENCE: 500
    # Rationale: bounds the size of the PRESENCE_INITIAL snapshot frame
    # (~60 bytes per user, ~30KB max).
    MAX_INITIAL_PRESENCE: Final[int] = 500

    # MAX_TRACKED_ADDRESSES: 10000
    # Rationale: upper bound on rate-limit windows held between sweeps.
    # A flood from spoofed proxies cannot grow memory without limit.
    MAX_TRACKED_ADDRESSES: Final[int] = 10000

    # CIRCUIT_FAILURE_THRESHOLD: 5
    # Rationale: 5 consecutive backplane failures before publishes are
    # skipped. Handles blips while stopping log floods during an outage.
    CIRCUIT_FAILURE_THRESHOLD: Final[int] = 5

    # CIRCUIT_RECOVERY_TIMEOUT: 30 seconds
    # Rationale: matches the typical Redis failover time.
    CIRCUIT_RECOVERY_TIMEOUT: Final[float] = 30.0

    # CIRCUIT_HALF_OPEN_MAX_CALLS: 1
    # Rationale: a single probe publish decides whether Redis is back.
    CIRCUIT_HALF_OPEN_MAX_CALLS: Final[int] = 1

    # MAX_RECONNECT_DELAY: 30 seconds
    # Rationale: caps subscriber backoff so recovery is noticed quickly.
    MAX_RECONNECT_DELAY: Final[float] = 30.0


# Local development origins for the HTTP surface's CORS policy
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
)
