"""
Unit tests for the polling loop.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sqslite.db.connection import session_scope
from sqslite.db.repository import MessageRepository
from sqslite.poller import Poller


async def enqueue(session_factory, clock, *bodies: bytes, type: str = "t") -> list[str]:
    async with session_scope(session_factory) as session:
        repo = MessageRepository(session, clock=clock)
        return [await repo.enqueue("q", type, body) for body in bodies]


class TestPoller:
    """Tests for Poller."""

    @pytest.fixture
    def poller(self, session_factory: async_sessionmaker[AsyncSession], clock) -> Poller:
        return Poller(
            session_factory,
            queue="q",
            types=["t"],
            lease=timedelta(seconds=10),
            max_retries=3,
            interval=60,
            clock=clock,
        )

    async def test_yields_available_messages_without_waiting(
        self,
        poller: Poller,
        session_factory,
        clock,
    ):
        """Test that hits are yielded back to back."""
        ids = await enqueue(session_factory, clock, b"1", b"2", b"3")

        received = []
        async with asyncio.timeout(5):
            async for message in poller:
                received.append(message.id)
                if len(received) == 3:
                    break

        assert received == ids

    async def test_stop_interrupts_wait(self, poller: Poller):
        """Test that stopping ends an idle poll without waiting out the interval."""

        async def consume():
            return [message async for message in poller]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.1)
        assert not task.done()

        poller.stop()
        async with asyncio.timeout(5):
            assert await task == []
        assert poller.stopped

    async def test_stop_event_is_shared(self, session_factory, clock):
        """Test that an external stop event ends the loop."""
        stop = asyncio.Event()
        poller = Poller(
            session_factory,
            queue="q",
            types=["t"],
            lease=timedelta(seconds=10),
            max_retries=3,
            interval=60,
            clock=clock,
            stop=stop,
        )
        stop.set()

        assert [message async for message in poller] == []

    async def test_picks_up_messages_after_miss(self, session_factory, clock):
        """Test that a message published during the wait is found on the next poll."""
        poller = Poller(
            session_factory,
            queue="q",
            types=["t"],
            lease=timedelta(seconds=10),
            max_retries=3,
            interval=0.05,
            clock=clock,
        )

        async def publish_later():
            await asyncio.sleep(0.2)
            return await enqueue(session_factory, clock, b"late")

        publisher = asyncio.create_task(publish_later())
        async with asyncio.timeout(5):
            async for message in poller:
                break

        assert [message.id] == await publisher

    async def test_restartable(self, poller: Poller, session_factory, clock):
        """Test that a new async for starts a fresh loop."""
        first, second = await enqueue(session_factory, clock, b"1", b"2")

        async for message in poller:
            assert message.id == first
            break

        async for message in poller:
            assert message.id == second
            break

    async def test_only_claims_its_types(self, poller: Poller, session_factory, clock):
        """Test that other types stay pending."""
        await enqueue(session_factory, clock, b"x", type="other")

        assert await poller.claim() is None
