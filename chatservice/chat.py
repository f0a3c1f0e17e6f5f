"""Chat orchestrator: turns raw (username, text) into persisted, expiring messages."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List

from .models import ChatMessage, utcnow
from .repository import MessageRepository

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(self, repository: MessageRepository, lifetime: timedelta, clock: Callable[[], datetime] = utcnow):
        if lifetime <= timedelta(0):
            raise ValueError("message lifetime must be positive")
        self.repository = repository
        self.lifetime = lifetime
        self._clock = clock

    async def process_message(self, username: str, text: str) -> ChatMessage:
        """Persist a new message and return it with its store-assigned id.

        Raises PersistenceError if the store rejects the write; callers must not
        broadcast in that case.
        """
        now = self._clock()
        message = ChatMessage(username=username, message=text, created_at=now, expires_at=now + self.lifetime)
        message_id = await self.repository.save(message)
        logger.debug("Saved message %s from %s", message_id, username)
        return replace(message, id=message_id)

    async def get_recent_messages(self, limit: int) -> List[ChatMessage]:
        if limit <= 0:
            return []
        return await self.repository.find_recent(limit, self._clock())

    async def cleanup_expired_messages(self) -> int:
        return await self.repository.delete_expired(self._clock())
