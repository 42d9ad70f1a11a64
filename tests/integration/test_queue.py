"""
Integration tests for the queue facade.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from sqslite.constants import FailurePolicy
from sqslite.db.connection import open_store
from sqslite.events import builder
from sqslite.exceptions import EventValidationError
from sqslite.observability.metrics import MetricsCollector
from sqslite.queue import Queue, create_queue
from sqslite.types.message import MessageContext, QueueOptions


class Hello(BaseModel):
    foo: str


event = builder()
hello = event("app.hello", Hello)


def make_options(**overrides) -> QueueOptions:
    values = {"max_retries": 3, "retry_delay": 10, "poll_interval": 0.01}
    values.update(overrides)
    return QueueOptions(**values)


async def stop_after(stop: asyncio.Event, seconds: float) -> None:
    await asyncio.sleep(seconds)
    stop.set()


class TestQueue:
    """Tests for publish, receive and handle on one store."""

    @pytest_asyncio.fixture
    async def queue(self, store: AsyncEngine, clock, metrics: MetricsCollector) -> Queue:
        return Queue(store, "notifications", make_options(), clock=clock, metrics=metrics)

    async def test_create_queue_from_path(self, database_path: Path, metrics):
        """Test that create_queue opens and sets up a store from a file path."""
        queue = await create_queue(
            database_path, "notifications", make_options(), metrics=metrics
        )
        try:
            message_id = await queue.publish("app.raw", {"a": 1})
            message = await queue.receive(["app.raw"])
        finally:
            await queue.store.dispose()

        assert message.id == message_id
        assert database_path.exists()

    async def test_publish_and_handle(self, queue: Queue):
        """Test that a handled message is decoded, then acknowledged."""
        message_id = await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        seen: list[MessageContext] = []

        async def on_hello(context: MessageContext) -> None:
            seen.append(context)
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle(hello, on_hello, stop=stop)

        assert len(seen) == 1
        assert seen[0].id == message_id
        assert seen[0].properties == Hello(foo="bar")
        assert seen[0].received == 1
        assert seen[0].queue == "notifications"

        stats = await queue.stats()
        assert stats.total == 0

    async def test_publish_invalid_writes_nothing(self, queue: Queue):
        """Test that a rejected payload never reaches the table."""
        with pytest.raises(EventValidationError):
            await queue.publish(hello, {"foo": ["not", "a", "string"]})

        stats = await queue.stats()
        assert stats.total == 0

    async def test_handler_failure_stops_loop(self, queue: Queue):
        """Test that the default policy re-raises and leaves the message leased."""
        await queue.publish(hello, {"foo": "bar"})

        async def on_hello(context: MessageContext) -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            async with asyncio.timeout(5):
                await queue.handle(hello, on_hello)

        stats = await queue.stats()
        assert (stats.pending, stats.leased, stats.exhausted) == (0, 1, 0)

    async def test_handler_always_fails_is_retried_max_times(self, queue: Queue, clock):
        """Test that a failing message is claimed exactly max_retries times, then kept."""
        message_id = await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        attempts: list[int] = []

        async def on_hello(context: MessageContext) -> None:
            attempts.append(context.received)
            # Let the lease run out before the next poll
            clock.advance(seconds=11)
            raise RuntimeError("always fails")

        async with asyncio.timeout(5):
            await asyncio.gather(
                queue.handle(hello, on_hello, stop=stop, failure_policy=FailurePolicy.CONTINUE),
                stop_after(stop, 0.5),
            )

        assert attempts == [1, 2, 3]

        clock.advance(days=1)
        assert await queue.receive(["app.hello"]) is None

        stats = await queue.stats()
        assert stats.exhausted == 1
        assert stats.total == 1
        assert await queue.acknowledge(message_id) == message_id

    async def test_last_attempt_flag(self, queue: Queue, clock):
        """Test that handlers can tell the final delivery apart."""
        await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        flags: list[bool] = []

        async def on_hello(context: MessageContext) -> None:
            flags.append(context.is_last_attempt)
            clock.advance(seconds=11)
            if not context.is_last_attempt:
                raise RuntimeError("retry me")
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle(
                hello, on_hello, stop=stop, failure_policy=FailurePolicy.CONTINUE
            )

        assert flags == [False, False, True]
        assert (await queue.stats()).total == 0

    async def test_handle_ignores_other_types(self, queue: Queue):
        """Test that handle only claims the types it was given."""
        await queue.publish("app.other", {"x": 1})
        hello_id = await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        seen: list[str] = []

        async def on_hello(context: MessageContext) -> None:
            seen.append(context.id)
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle([hello], on_hello, stop=stop)

        assert seen == [hello_id]
        stats = await queue.stats()
        assert stats.pending == 1

    async def test_acknowledge_and_extend_lease(self, queue: Queue, clock):
        """Test the explicit acknowledge and lease extension operations."""
        message_id = await queue.publish(hello, {"foo": "bar"})
        message = await queue.receive(["app.hello"])

        assert await queue.extend_lease(message_id, clock() + timedelta(minutes=1)) == message_id
        clock.advance(seconds=30)
        assert await queue.receive(["app.hello"]) is None

        assert await queue.acknowledge(message.id) == message_id
        assert await queue.acknowledge(message.id) is None
        assert await queue.extend_lease(message_id, clock()) is None

    async def test_receive_with_zero_lease(self, queue: Queue, clock):
        """Test that an explicit zero lease leaves the message claimable."""
        message_id = await queue.publish("app.raw", {"a": 1})

        first = await queue.receive(["app.raw"], lease=timedelta(0))
        second = await queue.receive(["app.raw"], lease=timedelta(0))

        assert first.id == second.id == message_id
        assert first.lease_expires_at == clock()
        assert second.received == 2

    async def test_metrics(
        self,
        queue: Queue,
        metrics_registry: CollectorRegistry,
    ):
        """Test that publish, claim, ack and queue depth are recorded."""
        await queue.publish(hello, {"foo": "bar"})
        await queue.publish(hello, {"foo": "baz"})
        stop = asyncio.Event()

        async def on_hello(context: MessageContext) -> None:
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle(hello, on_hello, stop=stop)
        await queue.stats()

        labels = {"queue": "notifications", "type": "app.hello"}
        assert metrics_registry.get_sample_value("sqslite_messages_published_total", labels) == 2
        assert metrics_registry.get_sample_value("sqslite_messages_claimed_total", labels) == 1
        assert metrics_registry.get_sample_value("sqslite_messages_acknowledged_total", labels) == 1
        assert (
            metrics_registry.get_sample_value(
                "sqslite_queue_depth", {"queue": "notifications", "state": "pending"}
            )
            == 1
        )


class TestHeartbeat:
    """Tests for automatic lease extension while a handler runs."""

    async def test_heartbeat_keeps_message_hidden(self, store: AsyncEngine, clock, metrics):
        queue = Queue(
            store,
            "notifications",
            make_options(heartbeat_interval=0.05),
            clock=clock,
            metrics=metrics,
        )
        await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        redelivered = []

        async def slow_handler(context: MessageContext) -> None:
            # Past the original lease; only heartbeats keep the message hidden
            clock.advance(seconds=15)
            await asyncio.sleep(0.3)
            redelivered.append(await queue.receive(["app.hello"]))
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle(hello, slow_handler, stop=stop)

        assert redelivered == [None]
        assert (await queue.stats()).total == 0

    async def test_heartbeat_failure_is_logged_and_retried(
        self, store: AsyncEngine, clock, metrics, monkeypatch, caplog
    ):
        queue = Queue(
            store,
            "notifications",
            make_options(heartbeat_interval=0.05),
            clock=clock,
            metrics=metrics,
        )
        message_id = await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        calls = []

        async def failing_extend_lease(message_id, timeout):
            calls.append(message_id)
            raise SQLAlchemyError("database is locked")

        async def slow_handler(context: MessageContext) -> None:
            await asyncio.sleep(0.3)
            stop.set()

        monkeypatch.setattr(queue, "extend_lease", failing_extend_lease)
        with caplog.at_level(logging.DEBUG, logger="sqslite.queue"):
            async with asyncio.timeout(5):
                await queue.handle(hello, slow_handler, stop=stop)

        assert len(calls) >= 2
        failures = [
            record
            for record in caplog.records
            if record.getMessage() == "Heartbeat failed, retrying next beat"
        ]
        assert failures
        assert all(record.message_id == message_id for record in failures)
        assert (await queue.stats()).total == 0

    async def test_without_heartbeat_message_is_redelivered(
        self, store: AsyncEngine, clock, metrics
    ):
        queue = Queue(store, "notifications", make_options(), clock=clock, metrics=metrics)
        message_id = await queue.publish(hello, {"foo": "bar"})
        stop = asyncio.Event()
        redelivered = []

        async def slow_handler(context: MessageContext) -> None:
            clock.advance(seconds=15)
            redelivered.append(await queue.receive(["app.hello"]))
            stop.set()

        async with asyncio.timeout(5):
            await queue.handle(hello, slow_handler, stop=stop)

        assert redelivered[0].id == message_id
        assert redelivered[0].received == 2


class TestConcurrentClaims:
    """Tests for claim exclusivity across connections."""

    async def test_no_message_is_claimed_twice(
        self,
        database_path: Path,
        store: AsyncEngine,
        metrics: MetricsCollector,
    ):
        publisher = Queue(store, "jobs", make_options(), metrics=metrics)
        published = {await publisher.publish("t", {"n": n}) for n in range(100)}

        engines = [open_store(database_path) for _ in range(5)]
        queues = [Queue(engine, "jobs", make_options(), metrics=metrics) for engine in engines]

        async def drain(queue: Queue) -> list[str]:
            claimed = []
            while (message := await queue.receive(["t"])) is not None:
                claimed.append(message.id)
            return claimed

        try:
            async with asyncio.timeout(60):
                results = await asyncio.gather(*(drain(queue) for queue in queues))
        finally:
            for engine in engines:
                await engine.dispose()

        claimed = [message_id for result in results for message_id in result]
        assert len(claimed) == len(set(claimed))
        assert set(claimed) == published
