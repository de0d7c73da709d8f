"""
Authentication Strategies for the WebSocket Gateway.

The lifecycle coordinator only needs one answer from the upgrade request:
is there a valid authenticated user, and which one. How that is decided is
a pluggable strategy.

PATTERN: Strategy - Different authentication algorithms.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings
from lovculator_ws.components.core.constants import WSCloseCode
from lovculator_ws.components.data.session_store import SessionStore, unsign_session_cookie

if TYPE_CHECKING:
    from fastapi import WebSocket


logger = get_logger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Result of an authentication attempt.

    Attributes:
        success: Whether authentication succeeded.
        user_id: Authenticated user id if successful.
        data: Extra identity data (strategy specific).
        error_message: Human-readable error message if failed.
        status_code: HTTP status for the upgrade denial response.
        close_code: WebSocket close code when a denial response is not possible.
        audit_reason: Short reason code for audit logging.
    """

    success: bool
    user_id: int | None = None
    data: dict[str, Any] | None = None
    error_message: str | None = None
    status_code: int = 401
    close_code: int = WSCloseCode.AUTH_FAILED
    audit_reason: str | None = None

    @classmethod
    def ok(cls, user_id: int, data: dict[str, Any] | None = None) -> "AuthResult":
        """Create successful authentication result."""
        return cls(success=True, user_id=user_id, data=data or {}, status_code=200)

    @classmethod
    def fail(cls, message: str, audit_reason: str = "auth_failed") -> "AuthResult":
        """Create unauthorized (no valid identity) result."""
        return cls(
            success=False,
            error_message=message,
            status_code=401,
            close_code=WSCloseCode.AUTH_FAILED,
            audit_reason=audit_reason,
        )

    @classmethod
    def forbidden(cls, message: str, audit_reason: str = "forbidden") -> "AuthResult":
        """Create forbidden (valid identity, access denied) result."""
        return cls(
            success=False,
            error_message=message,
            status_code=403,
            close_code=WSCloseCode.FORBIDDEN,
            audit_reason=audit_reason,
        )


# =============================================================================
# Strategy Interface
# =============================================================================


class AuthStrategy(ABC):
    """
    Abstract base class for authentication strategies.

    Implementations:
    - SessionCookieAuthStrategy: signed session cookie + session store lookup
    - NullAuthStrategy: fixed result, for tests and local tooling

    Usage:
        strategy = SessionCookieAuthStrategy()
        result = await strategy.authenticate(websocket)
        if result.success:
            user_id = result.user_id
    """

    @abstractmethod
    async def authenticate(self, websocket: "WebSocket") -> AuthResult:
        """
        Resolve the authenticated identity of an upgrade request.

        Called before the upgrade is accepted; must not send on the socket.
        """


# =============================================================================
# Implementations
# =============================================================================


class SessionCookieAuthStrategy(AuthStrategy):
    """
    Authenticate with the web application's session cookie.

    1. Read the configured cookie (``connect.sid`` by default).
    2. Verify its HMAC signature with the shared session secret.
    3. Load the session from the store and read ``sess.user.id``.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        secret: str | None = None,
        cookie_name: str | None = None,
    ) -> None:
        self._store = store or SessionStore()
        self._secret = secret or settings.session_secret
        self._cookie_name = cookie_name or settings.session_cookie_name

    async def authenticate(self, websocket: "WebSocket") -> AuthResult:
        cookie = websocket.cookies.get(self._cookie_name)
        if not cookie:
            return AuthResult.fail("Authentication required", audit_reason="no_session_cookie")

        sid = unsign_session_cookie(cookie, self._secret)
        if sid is None:
            logger.warning("Session cookie signature mismatch")
            return AuthResult.fail("Authentication required", audit_reason="bad_cookie_signature")

        user_id = await self._store.get_user_id(sid)
        if user_id is None:
            return AuthResult.fail("Authentication required", audit_reason="no_session_user")

        return AuthResult.ok(user_id)


class NullAuthStrategy(AuthStrategy):
    """
    Strategy with a fixed outcome.

    Useful for testing or when authentication is handled externally
    (e.g. an authenticating reverse proxy in front of a dev setup).
    """

    def __init__(self, user_id: int | None = 1, always_succeed: bool = True) -> None:
        """
        Args:
            user_id: Identity returned on success.
            always_succeed: If False, every attempt fails with 401.
        """
        self._user_id = user_id
        self._always_succeed = always_succeed

    async def authenticate(self, websocket: "WebSocket") -> AuthResult:
        if self._always_succeed and self._user_id is not None:
            return AuthResult.ok(self._user_id)
        return AuthResult.fail("Authentication disabled", audit_reason="null_strategy")


def create_default_auth_strategy() -> AuthStrategy:
    """Strategy used by the application."""
    return SessionCookieAuthStrategy()
