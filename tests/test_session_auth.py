"""
Tests for session cookie verification and the session store.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import pytest

from lovculator_shared.infrastructure.tables import session_store
from lovculator_ws.components.auth.strategies import (
    AuthResult,
    NullAuthStrategy,
    SessionCookieAuthStrategy,
)
from lovculator_ws.components.core.constants import WSCloseCode
from lovculator_ws.components.data.session_store import (
    SessionStore,
    extract_user_id,
    sign_session_id,
    unsign_session_cookie,
)

from conftest import make_fake_websocket


SECRET = "test-secret-with-enough-length-0123456789"
NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def signed_cookie(sid: str, secret: str = SECRET) -> str:
    return f"s:{sid}.{sign_session_id(sid, secret)}"


@pytest.fixture
def store(session_factory, db_engine):
    """Session store with one live and one expired session."""
    with db_engine.begin() as db:
        db.execute(session_store.insert(), [
            {
                "sid": "live-sid",
                "sess": {"cookie": {}, "user": {"id": 42, "username": "ana"}},
                "expire": (NOW + timedelta(hours=1)).replace(tzinfo=None),
            },
            {
                "sid": "expired-sid",
                "sess": {"user": {"id": 43}},
                "expire": (NOW - timedelta(minutes=1)).replace(tzinfo=None),
            },
            {
                "sid": "anonymous-sid",
                "sess": {"cookie": {}},
                "expire": (NOW + timedelta(hours=1)).replace(tzinfo=None),
            },
        ])
    return SessionStore(session_factory=session_factory, timeout=2.0, clock=lambda: NOW)


class TestCookieSignature:
    """Signed cookie format ``s:<sid>.<signature>``."""

    def test_valid_cookie(self):
        assert unsign_session_cookie(signed_cookie("abc123"), SECRET) == "abc123"

    def test_url_encoded_cookie(self):
        assert unsign_session_cookie(quote(signed_cookie("abc123"), safe=""), SECRET) == "abc123"

    def test_sid_containing_dots(self):
        assert unsign_session_cookie(signed_cookie("a.b.c"), SECRET) == "a.b.c"

    @pytest.mark.parametrize("value", [
        "abc123",
        "s:abc123",
        "s:.signature",
        "s:abc124." + sign_session_id("abc123", SECRET),
    ])
    def test_rejected(self, value):
        assert unsign_session_cookie(value, SECRET) is None

    def test_wrong_secret(self):
        assert unsign_session_cookie(signed_cookie("abc123", "other-secret"), SECRET) is None

    def test_signature_is_unpadded_base64(self):
        assert "=" not in sign_session_id("abc123", SECRET)


class TestExtractUserId:

    @pytest.mark.parametrize("sess,expected", [
        ({"user": {"id": 5}}, 5),
        ({"user": {"id": "6"}}, 6),
        ('{"user": {"id": 7}}', 7),
        ({"user": {"id": True}}, None),
        ({"user": None}, None),
        ({}, None),
        ("not json", None),
        ([1, 2], None),
    ])
    def test_extract(self, sess, expected):
        assert extract_user_id(sess) == expected


class TestSessionStore:

    @pytest.mark.asyncio
    async def test_live_session(self, store):
        assert await store.get_user_id("live-sid") == 42

    @pytest.mark.asyncio
    async def test_expired_session_is_absent(self, store):
        assert await store.get_user_id("expired-sid") is None

    @pytest.mark.asyncio
    async def test_unknown_and_anonymous_sessions(self, store):
        assert await store.get_user_id("missing") is None
        assert await store.get_user_id("anonymous-sid") is None

    @pytest.mark.asyncio
    async def test_database_error_is_reported_as_absent(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        store = SessionStore(session_factory=broken_factory)
        assert await store.get_user_id("live-sid") is None


class TestSessionCookieAuthStrategy:

    @pytest.mark.asyncio
    async def test_valid_cookie_authenticates(self, store):
        strategy = SessionCookieAuthStrategy(store=store, secret=SECRET)
        ws = make_fake_websocket(cookies={"connect.sid": signed_cookie("live-sid")})

        result = await strategy.authenticate(ws)

        assert result.success is True
        assert result.user_id == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cookies,reason", [
        ({}, "no_session_cookie"),
        ({"connect.sid": "s:live-sid.forged"}, "bad_cookie_signature"),
        ({"connect.sid": signed_cookie("expired-sid")}, "no_session_user"),
    ])
    async def test_failures(self, store, cookies, reason):
        strategy = SessionCookieAuthStrategy(store=store, secret=SECRET)

        result = await strategy.authenticate(make_fake_websocket(cookies=cookies))

        assert result.success is False
        assert result.status_code == 401
        assert result.close_code == WSCloseCode.AUTH_FAILED
        assert result.audit_reason == reason

    @pytest.mark.asyncio
    async def test_custom_cookie_name(self, store):
        strategy = SessionCookieAuthStrategy(store=store, secret=SECRET, cookie_name="sid")
        ws = make_fake_websocket(cookies={"sid": signed_cookie("live-sid")})
        assert (await strategy.authenticate(ws)).user_id == 42


class TestNullAuthStrategy:

    @pytest.mark.asyncio
    async def test_fixed_identity(self):
        result = await NullAuthStrategy(user_id=9).authenticate(make_fake_websocket())
        assert result.user_id == 9

    @pytest.mark.asyncio
    async def test_always_fails(self):
        result = await NullAuthStrategy(always_succeed=False).authenticate(make_fake_websocket())
        assert result.success is False

    def test_forbidden_result(self):
        result = AuthResult.forbidden("Account suspended")
        assert result.status_code == 403
        assert result.close_code == WSCloseCode.FORBIDDEN
