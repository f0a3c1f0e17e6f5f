"""Repository pattern for chat message persistence with TTL-aware queries."""

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Protocol, Tuple

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import PersistenceError, QueryError
from .models import ChatMessage

logger = logging.getLogger(__name__)


class MessageRepository(Protocol):
    async def save(self, message: ChatMessage) -> str: ...

    async def find_recent(self, limit: int, now: datetime) -> List[ChatMessage]: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def close(self) -> None: ...


class InMemoryMessageRepository:
    """In-memory message store. Used when no database is configured."""
    def __init__(self):
        self._messages: Dict[str, Tuple[int, ChatMessage]] = {}
        self._seq = 0
        self._lock = asyncio.Lock()

    async def save(self, message: ChatMessage) -> str:
        message_id = str(uuid.uuid4())
        async with self._lock:
            self._seq += 1
            self._messages[message_id] = (self._seq, replace(message, id=message_id))
        return message_id

    async def find_recent(self, limit: int, now: datetime) -> List[ChatMessage]:
        if limit <= 0:
            return []
        async with self._lock:
            live = [entry for entry in self._messages.values() if not entry[1].is_expired(now)]
        # insertion order breaks created_at ties
        live.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
        return [m for _, m in live[:limit]]

    async def delete_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [mid for mid, (_, m) in self._messages.items() if m.is_expired(now)]
            for mid in expired:
                del self._messages[mid]
        return len(expired)

    async def close(self) -> None:
        return None


Base = declarative_base()


class MessageRecord(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True)
    username = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # range index for the sweeper's expires_at <= now delete
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlMessageRepository:
    """SQLAlchemy-backed message store.

    SQLAlchemy sessions are blocking, so every call runs in a worker thread via
    ``asyncio.to_thread``; each call opens its own session, which makes the
    repository safe for concurrent save/find/delete from many tasks.
    """

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        self.engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def _save(self, message: ChatMessage) -> str:
        with self.SessionLocal() as session:
            record = MessageRecord(
                username=message.username,
                message=message.message,
                created_at=_as_utc(message.created_at),
                expires_at=_as_utc(message.expires_at),
            )
            session.add(record)
            session.commit()
            return str(record.id)

    def _find_recent(self, limit: int, now: datetime) -> List[ChatMessage]:
        with self.SessionLocal() as session:
            rows = (
                session.query(MessageRecord)
                .filter(MessageRecord.expires_at > _as_utc(now))
                .order_by(MessageRecord.created_at.desc(), MessageRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [
                ChatMessage(
                    id=str(r.id),
                    username=r.username,
                    message=r.message,
                    created_at=_as_utc(r.created_at),
                    expires_at=_as_utc(r.expires_at),
                )
                for r in rows
            ]

    def _delete_expired(self, now: datetime) -> int:
        with self.SessionLocal() as session:
            count = (
                session.query(MessageRecord)
                .filter(MessageRecord.expires_at <= _as_utc(now))
                .delete(synchronize_session=False)
            )
            session.commit()
            return count

    async def save(self, message: ChatMessage) -> str:
        try:
            return await asyncio.to_thread(self._save, message)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to save message from {message.username!r}") from e

    async def find_recent(self, limit: int, now: datetime) -> List[ChatMessage]:
        if limit <= 0:
            return []
        try:
            return await asyncio.to_thread(self._find_recent, limit, now)
        except SQLAlchemyError as e:
            raise QueryError("failed to fetch recent messages") from e

    async def delete_expired(self, now: datetime) -> int:
        try:
            return await asyncio.to_thread(self._delete_expired, now)
        except SQLAlchemyError as e:
            raise QueryError("failed to delete expired messages") from e

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)


def build_repository(database_url: str) -> MessageRepository:
    if not database_url:
        logger.info("No database configured, keeping messages in memory")
        return InMemoryMessageRepository()
    logger.info("Using SQL message store at %s", database_url.split("@")[-1])
    return SqlMessageRepository(database_url)
