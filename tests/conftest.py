"""
Pytest configuration and fixtures for gateway tests.

WebSockets are MagicMocks shaped like starlette's WebSocket: both states
CONNECTED, AsyncMock send/accept/close, headers, cookies and peer address.
Closing a fake socket flips its states to DISCONNECTED like the real one.
"""

import itertools
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState
from unittest.mock import AsyncMock, MagicMock

from lovculator_shared.infrastructure.tables import metadata
from lovculator_ws.components.auth.strategies import AuthResult, AuthStrategy
from lovculator_ws.components.broadcast.dispatcher import LocalDispatcher
from lovculator_ws.components.connection.registry import ConnectionRegistry
from lovculator_ws.components.core.context import Connection
from lovculator_ws.components.data.participants import ConversationParticipantRepository
from lovculator_ws.connection_manager import ConnectionManager


_address_counter = itertools.count(1)


def make_fake_websocket(
    user_id: int | None = None,
    address: str | None = None,
    cookies: dict | None = None,
    origin: str = "http://localhost:3000",
    denial_supported: bool = False,
) -> MagicMock:
    """Build a fake starlette WebSocket."""
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED

    headers = {"origin": origin, "user-agent": "pytest"}
    if user_id is not None:
        headers["x-test-user"] = str(user_id)
    ws.headers = headers
    ws.cookies = cookies or {}
    ws.client = MagicMock(host=address or f"198.51.100.{next(_address_counter) % 250 + 1}")
    ws.scope = {"extensions": {"websocket.http.response": {}} if denial_supported else {}}

    async def _close(code: int = 1000, reason: str | None = None) -> None:
        ws.client_state = WebSocketState.DISCONNECTED
        ws.application_state = WebSocketState.DISCONNECTED

    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock(side_effect=_close)
    ws.send_denial_response = AsyncMock()
    return ws


def sent_frames(ws: MagicMock) -> list[dict]:
    """Decoded JSON frames sent on a fake socket, in order."""
    return [json.loads(call.args[0]) for call in ws.send_text.await_args_list]


def sent_types(ws: MagicMock) -> list[str]:
    return [frame["type"] for frame in sent_frames(ws)]


class HeaderAuthStrategy(AuthStrategy):
    """Test strategy: identity from the x-test-user header."""

    async def authenticate(self, websocket) -> AuthResult:
        raw = websocket.headers.get("x-test-user")
        if raw is None:
            return AuthResult.fail("Authentication required", audit_reason="no_test_user")
        return AuthResult.ok(int(raw))


@pytest.fixture
def fake_ws():
    """Factory for fake WebSockets."""
    return make_fake_websocket


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry):
    return LocalDispatcher(registry, batch_size=2, send_timeout=1.0)


@pytest.fixture
def connect(registry, fake_ws):
    """Register a fake connection for a user and return it."""
    def _connect(user_id: int) -> Connection:
        conn = Connection.from_websocket(fake_ws(user_id), user_id=user_id, address="203.0.113.9")
        registry.register(user_id, conn)
        return conn
    return _connect


@pytest.fixture
def db_engine():
    """SQLite in-memory engine holding the gateway's external tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def participants(session_factory):
    return ConversationParticipantRepository(session_factory=session_factory, timeout=2.0)


@pytest.fixture
def manager(participants):
    """Fully wired single-process gateway with header-based test auth."""
    return ConnectionManager(
        auth_strategy=HeaderAuthStrategy(),
        participants=participants,
        redis_url="",
        heartbeat_interval=30.0,
        debug_requests_enabled=True,
    )
