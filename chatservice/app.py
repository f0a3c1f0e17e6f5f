"""FastAPI app exposing chat history over HTTP and the live chat WebSocket."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware

from .chat import ChatService
from .config import (
    CORS_ORIGINS,
    DATABASE_URL,
    HISTORY_PAGE_SIZE,
    HOST,
    LOG_LEVEL,
    MESSAGE_LIFETIME_SECONDS,
    PORT,
    SEND_QUEUE_SIZE,
    SWEEP_INTERVAL_SECONDS,
)
from .errors import QueryError
from .hub import Hub
from .repository import build_repository
from .session import ClientSession
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

# store, orchestrator, hub and sweeper (singletons for process)
repository = build_repository(DATABASE_URL)
chat_service = ChatService(repository, timedelta(seconds=MESSAGE_LIFETIME_SECONDS))
hub = Hub()
sweeper = ExpirySweeper(chat_service, interval=SWEEP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await hub.start()
    await sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await hub.stop()
        await repository.close()


app = FastAPI(title="Chat Fan-out Service", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_methods=["*"], allow_headers=["*"])


@app.get("/api/messages")
async def recent_messages(limit: int = Query(HISTORY_PAGE_SIZE, ge=1)):
    try:
        messages = await chat_service.get_recent_messages(min(limit, HISTORY_PAGE_SIZE))
    except QueryError as e:
        logger.error("Failed to fetch messages: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch messages")
    return [m.to_dict() for m in messages]


@app.get("/health")
async def health():
    return {"status": "ok", "sessions": hub.session_count}


@app.websocket("/api/ws")
async def websocket_endpoint(ws: WebSocket, username: str = ""):
    if not username:
        # closing before accept fails the handshake; clients see HTTP 403
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await ws.accept()
    session = ClientSession(hub, ws, username, chat_service, queue_size=SEND_QUEUE_SIZE)
    hub.register(session)
    await session.serve()


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run("chatservice.app:app", host=HOST, port=PORT, reload=False, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
