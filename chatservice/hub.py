"""Hub: track chat sessions and fan broadcasts out to them.

All registry changes and broadcasts are posted as events and handled one at a
time by a single control loop, so the registry needs no lock.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .models import ChatMessage

if TYPE_CHECKING:
    from .session import ClientSession

logger = logging.getLogger(__name__)

_REGISTER = "register"
_UNREGISTER = "unregister"
_BROADCAST = "broadcast"


class Hub:
    def __init__(self):
        self.active: Dict["ClientSession", bool] = {}
        self._events: Optional["asyncio.Queue[Tuple[str, Any]]"] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def session_count(self) -> int:
        return len(self.active)

    async def start(self):
        self._events = asyncio.Queue()
        self._task = asyncio.create_task(self._run_loop(self._events))

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        self._events = None
        # release every write pump still waiting on its queue
        for session in list(self.active):
            self._remove(session)

    def register(self, session: "ClientSession"):
        self._post(_REGISTER, session)

    def unregister(self, session: "ClientSession"):
        if self._events is None:
            # loop is gone and stop() already emptied the registry
            session.close_outbound()
            return
        self._post(_UNREGISTER, session)

    def broadcast(self, message: ChatMessage):
        self._post(_BROADCAST, message)

    async def flush(self):
        """Wait until every event posted so far has been handled."""
        if self._events is not None:
            await self._events.join()

    def _post(self, kind: str, payload: Any):
        if self._events is None:
            raise RuntimeError("hub is not running")
        self._events.put_nowait((kind, payload))

    async def _run_loop(self, events: "asyncio.Queue[Tuple[str, Any]]"):
        while True:
            kind, payload = await events.get()
            try:
                if kind == _REGISTER:
                    self._add(payload)
                elif kind == _UNREGISTER:
                    self._remove(payload)
                elif kind == _BROADCAST:
                    self._fan_out(payload)
            except Exception:
                logger.exception("Hub failed to handle %s event", kind)
            finally:
                events.task_done()

    def _add(self, session: "ClientSession"):
        if session in self.active:
            return
        self.active[session] = True
        session.registered = True
        logger.info("%s joined (%d connected)", session.username, len(self.active))

    def _remove(self, session: "ClientSession"):
        if self.active.pop(session, None) is None:
            return
        session.registered = False
        session.close_outbound()
        logger.info("%s left (%d connected)", session.username, len(self.active))

    def _fan_out(self, message: ChatMessage):
        try:
            frame = message.to_json()
        except (TypeError, ValueError):
            logger.exception("Could not serialize message %s", message.id)
            return
        evicted = []
        for session in self.active:
            # Never wait on a slow client; a full queue means it is dropped.
            if not session.offer(frame):
                evicted.append(session)
        for session in evicted:
            logger.warning("Evicting %s: outbound queue full", session.username)
            self._remove(session)
