"""Client session: read and write pumps bridging one websocket and the hub."""

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from .chat import ChatService
from .errors import PersistenceError

if TYPE_CHECKING:
    from .hub import Hub

logger = logging.getLogger(__name__)

_CLOSED = object()


class ClientSession:
    def __init__(self, hub: "Hub", websocket: WebSocket, username: str, chat: ChatService, queue_size: int = 256, close_timeout: float = 5.0):
        if not username:
            raise ValueError("username is required")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.hub = hub
        self.websocket = websocket
        self.username = username
        self.chat = chat
        self.queue_size = queue_size
        self.close_timeout = close_timeout
        # bounded by offer(); the close marker always fits behind the backlog
        self.outbound: asyncio.Queue = asyncio.Queue()
        self.registered = False
        self.closed = False
        self._ended = asyncio.Event()

    def __repr__(self):
        return f"<ClientSession {self.username!r} registered={self.registered}>"

    def offer(self, frame: str) -> bool:
        """Non-blocking enqueue used by the hub loop. False means the queue is full."""
        if self.closed or self.outbound.qsize() >= self.queue_size:
            return False
        self.outbound.put_nowait(frame)
        return True

    def close_outbound(self):
        if self.closed:
            return
        self.closed = True
        self.outbound.put_nowait(_CLOSED)
        self._ended.set()

    async def serve(self):
        """Run both pumps until the session ends.

        The session ends on the first of: read pump stops, write pump stops, or
        the hub closes the outbound queue (unregister or eviction). The read
        pump is then cancelled and the socket closed; the write pump gets
        ``close_timeout`` seconds to flush its backlog before it is cancelled,
        so a peer that stopped reading cannot hold the session open.
        """
        writer = asyncio.create_task(self.write_pump())
        reader = asyncio.create_task(self.read_pump())
        ended = asyncio.create_task(self._ended.wait())
        pumps = (reader, writer)
        try:
            await asyncio.wait({reader, writer, ended}, return_when=asyncio.FIRST_COMPLETED)
            if not reader.done():
                reader.cancel()
                await asyncio.wait({reader})
            if not writer.done():
                await asyncio.wait({writer}, timeout=self.close_timeout)
                if not writer.done():
                    logger.warning("Write to %s stalled, abandoning backlog", self.username)
                    writer.cancel()
            results = await asyncio.gather(*pumps, return_exceptions=True)
        except asyncio.CancelledError:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            raise
        finally:
            ended.cancel()
        for result in results:
            if isinstance(result, Exception):
                logger.error("Session %s ended with error: %r", self.username, result)

    async def read_pump(self):
        try:
            while True:
                try:
                    text = await self.websocket.receive_text()
                except WebSocketDisconnect:
                    break
                except Exception as e:
                    logger.warning("Read from %s failed: %r", self.username, e)
                    break
                try:
                    message = await self.chat.process_message(self.username, text)
                except PersistenceError as e:
                    # best-effort ingestion: drop the frame, keep the session
                    logger.warning("Dropping message from %s: %s", self.username, e)
                    continue
                except Exception:
                    logger.exception("Dropping message from %s", self.username)
                    continue
                if self.closed:
                    # evicted while the save was in flight
                    break
                self.hub.broadcast(message)
        finally:
            self.hub.unregister(self)
            await self._close_socket()

    async def write_pump(self):
        try:
            while True:
                frame = await self.outbound.get()
                if frame is _CLOSED:
                    break
                try:
                    await self.websocket.send_text(frame)
                except Exception as e:
                    logger.warning("Write to %s failed: %r", self.username, e)
                    break
        finally:
            self.hub.unregister(self)
            await self._close_socket()

    async def _close_socket(self):
        try:
            await self.websocket.close()
        except Exception as e:
            # the other pump or the peer closed it first
            logger.debug("Closing socket for %s: %r", self.username, e)
