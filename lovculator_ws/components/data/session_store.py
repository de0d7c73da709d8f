"""
Read access to the web application's session store.

Sessions are issued by the main web app (express-session with a PostgreSQL
store): the browser carries a signed cookie ``s:<sid>.<signature>`` and the
session document lives in the ``session_store`` table. The gateway only
verifies the signature and reads the user id; it never writes sessions.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import unquote

from sqlalchemy import select
from sqlalchemy.orm import Session

from lovculator_shared.config.logging import get_logger
from lovculator_shared.infrastructure.db import get_session_factory
from lovculator_shared.infrastructure.tables import session_store
from lovculator_ws.components.core.constants import WSConstants

logger = get_logger(__name__)


def sign_session_id(sid: str, secret: str) -> str:
    """Signature as produced by the cookie-signature package (unpadded base64)."""
    digest = hmac.new(secret.encode(), sid.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().rstrip("=")


def unsign_session_cookie(value: str, secret: str) -> str | None:
    """
    Verify a signed session cookie and return the session id.

    Accepts the URL-encoded form browsers send ("s%3A...").

    Returns:
        The session id, or None if the cookie is unsigned or tampered with.
    """
    value = unquote(value)
    if not value.startswith("s:"):
        return None

    signed = value[2:]
    sid, sep, signature = signed.rpartition(".")
    if not sep or not sid:
        return None

    expected = sign_session_id(sid, secret)
    if not hmac.compare_digest(expected.encode(), signature.encode()):
        return None
    return sid


def extract_user_id(sess: Any) -> int | None:
    """Read ``sess.user.id`` from a session document."""
    if isinstance(sess, str):
        try:
            sess = json.loads(sess)
        except ValueError:
            return None
    if not isinstance(sess, dict):
        return None

    user = sess.get("user")
    if not isinstance(user, dict):
        return None

    raw_id = user.get("id")
    if isinstance(raw_id, bool):
        return None
    try:
        return int(raw_id)
    except (TypeError, ValueError):
        return None


class SessionStore:
    """
    Looks up live sessions by id.

    Expired rows are treated as absent. Lookups run in a worker thread with
    a timeout; timeouts and database errors are logged and reported as "no
    session" so a database incident degrades to failed upgrades, not to a
    blocked event loop.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        timeout: float = WSConstants.DB_LOOKUP_TIMEOUT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._session_factory = session_factory
        self._timeout = timeout
        self._clock = clock

    async def get_user_id(self, sid: str) -> int | None:
        """User id of a live session, or None."""
        try:
            sess = await asyncio.wait_for(
                asyncio.to_thread(self._load_sync, sid),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Session lookup timed out", timeout=self._timeout)
            return None
        except Exception as e:
            logger.error("Session lookup failed", error=str(e))
            return None

        if sess is None:
            return None
        return extract_user_id(sess)

    def _load_sync(self, sid: str) -> Any:
        factory = self._session_factory or get_session_factory()
        stmt = select(session_store.c.sess, session_store.c.expire).where(session_store.c.sid == sid)
        with factory() as db:
            row = db.execute(stmt).first()

        if row is None:
            return None

        expire = row.expire
        if expire is not None:
            if expire.tzinfo is None:
                # SQLite and naive timestamp columns come back without tz
                expire = expire.replace(tzinfo=timezone.utc)
            if expire <= self._clock():
                return None
        return row.sess
