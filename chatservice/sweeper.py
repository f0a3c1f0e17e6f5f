"""Background task that periodically purges expired chat messages."""

import asyncio
import logging
from typing import Optional

from .chat import ChatService
from .errors import QueryError

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, chat: ChatService, interval: float = 10.0):
        if interval <= 0:
            raise ValueError("sweep interval must be positive")
        self.chat = chat
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._shutdown: Optional[asyncio.Event] = None

    async def start(self):
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self):
        if self._task is None:
            return
        self._shutdown.set()
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def sweep_once(self) -> Optional[int]:
        """Run one cleanup pass. Returns the number removed, or None if it failed."""
        logger.debug("Starting expired messages cleanup")
        try:
            removed = await self.chat.cleanup_expired_messages()
        except QueryError as e:
            logger.error("Failed to cleanup expired messages: %s", e)
            return None
        except Exception:
            logger.exception("Unexpected error during expired messages cleanup")
            return None
        if removed:
            logger.info("Expired messages cleanup removed %d message(s)", removed)
        return removed

    async def _run_loop(self):
        while not self._shutdown.is_set():
            await asyncio.sleep(self.interval)
            await self.sweep_once()
