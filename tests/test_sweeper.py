import asyncio
from datetime import timedelta

import pytest

from chatservice.chat import ChatService
from chatservice.errors import QueryError
from chatservice.repository import InMemoryMessageRepository
from chatservice.sweeper import ExpirySweeper
from fakes import Clock


class FlakyChat:
    """Cleanup fails on the first call, then succeeds."""

    def __init__(self):
        self.calls = 0

    async def cleanup_expired_messages(self):
        self.calls += 1
        if self.calls == 1:
            raise QueryError("store unavailable")
        return 0


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        ExpirySweeper(FlakyChat(), interval=0)


def test_sweep_once_reports_removed_count():
    async def _run():
        clock = Clock()
        chat = ChatService(InMemoryMessageRepository(), timedelta(seconds=5), clock=clock)
        await chat.process_message("alice", "a")
        await chat.process_message("alice", "b")
        sweeper = ExpirySweeper(chat, interval=10)
        assert await sweeper.sweep_once() == 0
        clock.advance(seconds=5)
        assert await sweeper.sweep_once() == 2
        assert await sweeper.sweep_once() == 0
    asyncio.run(_run())


def test_failed_sweep_does_not_stop_the_schedule():
    async def _run():
        chat = FlakyChat()
        sweeper = ExpirySweeper(chat, interval=0.02)
        assert await sweeper.sweep_once() is None
        await sweeper.start()
        await asyncio.sleep(0.2)
        await sweeper.stop()
        assert chat.calls >= 3
    asyncio.run(_run())


def test_unexpected_error_is_logged_and_survived():
    class ExplodingChat:
        calls = 0

        async def cleanup_expired_messages(self):
            self.calls += 1
            raise KeyError("boom")

    async def _run():
        chat = ExplodingChat()
        sweeper = ExpirySweeper(chat, interval=0.02)
        await sweeper.start()
        await asyncio.sleep(0.15)
        await sweeper.stop()
        assert chat.calls >= 2
    asyncio.run(_run())


def test_expired_message_is_swept_after_lifetime():
    async def _run():
        repo = InMemoryMessageRepository()
        chat = ChatService(repo, timedelta(seconds=1))
        sweeper = ExpirySweeper(chat, interval=1)
        message = await chat.process_message("alice", "short-lived")
        await sweeper.start()
        await asyncio.sleep(2.3)
        await sweeper.stop()
        assert await chat.get_recent_messages(50) == []
        # looking from before expiry proves the row is gone, not just filtered
        assert await repo.find_recent(50, message.created_at) == []
    asyncio.run(_run())


def test_stop_without_start_is_a_noop():
    async def _run():
        await ExpirySweeper(FlakyChat(), interval=1).stop()
    asyncio.run(_run())
