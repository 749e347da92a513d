"""Per-user conversation context with expiry."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from taskbot.db import Database
from taskbot.models import ConversationContext
from taskbot.state import KeyedLocks

LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationContextStore:
    """Database-backed context handles, one exclusive section per user."""

    def __init__(
        self,
        db: Database,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._db = db
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._locks = KeyedLocks()

    def is_stale(self, context: ConversationContext) -> bool:
        if not context.context_id or context.updated_at is None:
            return True
        return self._clock() - context.updated_at >= self._ttl

    async def active_context_id(self, user_id: int) -> str | None:
        """Return the user's context id, or None when absent or expired."""

        async with self._locks.hold(str(user_id)):
            context = self._db.get_conversation(user_id)
            if self.is_stale(context):
                if context.context_id:
                    LOGGER.info("Context %s for user %s expired", context.context_id, user_id)
                    self._db.save_conversation(user_id, None, None)
                return None
            return context.context_id

    async def save(self, user_id: int, context_id: str | None) -> None:
        if not context_id:
            return
        async with self._locks.hold(str(user_id)):
            self._db.save_conversation(user_id, context_id, self._clock())

    async def clear(self, user_id: int) -> None:
        async with self._locks.hold(str(user_id)):
            self._db.save_conversation(user_id, None, None)
        LOGGER.info("Cleared conversation context for user %s", user_id)
