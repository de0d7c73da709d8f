"""
Conversation participant lookups.

Used by the event router to relay typing indicators that name a
conversation instead of a target user. Queries run in a worker thread with
a timeout so a slow database never blocks the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from lovculator_shared.config.logging import get_logger
from lovculator_shared.infrastructure.db import get_session_factory
from lovculator_shared.infrastructure.tables import conversation_participants
from lovculator_ws.components.core.constants import WSConstants

logger = get_logger(__name__)


class ConversationParticipantRepository:
    """
    Async-safe access to conversation membership.

    Usage:
        repo = ConversationParticipantRepository()
        user_ids = await repo.get_other_participants(conversation_id=12, user_id=7)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        timeout: float = WSConstants.DB_LOOKUP_TIMEOUT,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory (defaults to the app's).
            timeout: Timeout in seconds for each lookup.
        """
        self._session_factory = session_factory
        self._timeout = timeout

        self._lookup_success = 0
        self._lookup_timeouts = 0
        self._lookup_errors = 0

    async def get_other_participants(self, conversation_id: int, user_id: int) -> list[int]:
        """
        Participants of a conversation other than ``user_id``.

        Returns:
            User ids, empty on timeout or database error.
        """
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._query_sync, conversation_id, user_id),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self._lookup_timeouts += 1
            logger.error(
                "Participant lookup timed out",
                conversation_id=conversation_id,
                timeout=self._timeout,
            )
            return []
        except Exception as e:
            self._lookup_errors += 1
            logger.error(
                "Participant lookup failed",
                conversation_id=conversation_id,
                error=str(e),
            )
            return []

        self._lookup_success += 1
        return result

    def _query_sync(self, conversation_id: int, user_id: int) -> list[int]:
        factory = self._session_factory or get_session_factory()
        stmt = (
            select(conversation_participants.c.user_id)
            .where(conversation_participants.c.conversation_id == conversation_id)
            .where(conversation_participants.c.user_id != user_id)
        )
        with factory() as db:
            return [row for row in db.scalars(stmt)]

    def get_stats(self) -> dict[str, Any]:
        return {
            "timeout": self._timeout,
            "lookups": {
                "success": self._lookup_success,
                "timeouts": self._lookup_timeouts,
                "errors": self._lookup_errors,
            },
        }
