"""
Tests for conversation participant lookups.
"""

import time

import pytest

from lovculator_shared.infrastructure.tables import conversation_participants
from lovculator_ws.components.data.participants import ConversationParticipantRepository


@pytest.fixture
def seeded(db_engine):
    with db_engine.begin() as db:
        db.execute(conversation_participants.insert(), [
            {"conversation_id": 1, "user_id": 10},
            {"conversation_id": 1, "user_id": 11},
            {"conversation_id": 1, "user_id": 12},
            {"conversation_id": 2, "user_id": 10},
        ])
    return db_engine


class TestConversationParticipantRepository:

    @pytest.mark.asyncio
    async def test_other_participants(self, participants, seeded):
        assert sorted(await participants.get_other_participants(1, 10)) == [11, 12]
        assert await participants.get_other_participants(2, 10) == []
        assert participants.get_stats()["lookups"]["success"] == 2

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, participants, seeded):
        assert await participants.get_other_participants(99, 10) == []

    @pytest.mark.asyncio
    async def test_database_error_returns_empty(self):
        def broken_factory():
            raise RuntimeError("connection refused")

        repo = ConversationParticipantRepository(session_factory=broken_factory)

        assert await repo.get_other_participants(1, 10) == []
        assert repo.get_stats()["lookups"]["errors"] == 1

    @pytest.mark.asyncio
    async def test_slow_lookup_times_out(self):
        def slow_factory():
            time.sleep(0.3)
            raise RuntimeError("too late")

        repo = ConversationParticipantRepository(session_factory=slow_factory, timeout=0.05)

        assert await repo.get_other_participants(1, 10) == []
        assert repo.get_stats()["lookups"]["timeouts"] == 1
