"""
Queue facade.

Binds a queue name and retry policy to a store and exposes the two
operations applications use: :meth:`Queue.publish` and :meth:`Queue.handle`.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from sqslite.constants import (
    SPAN_CLAIM_MESSAGE,
    SPAN_HANDLE_MESSAGE,
    SPAN_PUBLISH_MESSAGE,
    FailurePolicy,
)
from sqslite.db.connection import (
    create_session_factory,
    open_store,
    session_scope,
    setup,
)
from sqslite.db.repository import MessageRepository
from sqslite.events import EventDefinition, EventRegistry, resolve
from sqslite.observability.metrics import MetricsCollector, get_metrics
from sqslite.observability.tracing import get_tracer
from sqslite.poller import Poller
from sqslite.timestamps import Clock, utcnow
from sqslite.types.message import ClaimedMessage, MessageContext, QueueOptions, QueueStats

logger = logging.getLogger(__name__)

Handler = Callable[[MessageContext], Awaitable[None]]


class Queue:
    """
    A named queue on a shared store.

    Messages are delivered at least once: a message whose handler fails
    stays leased until its lease runs out and is then claimed again, until
    it has been received ``max_retries`` times. After that it stays in the
    table, unclaimable, until someone deletes it.
    """

    def __init__(
        self,
        store: AsyncEngine,
        name: str,
        options: QueueOptions | None = None,
        *,
        clock: Clock = utcnow,
        metrics: MetricsCollector | None = None,
    ):
        """
        Bind a queue to an already set-up store. Use :func:`create_queue`
        to also run schema setup.

        Args:
            store: The async engine of the queue database.
            name: The queue name.
            options: Retry and polling policy.
            clock: Source of the current time.
            metrics: Metrics collector. Defaults to the process-wide one.
        """
        self.store = store
        self.name = name
        self.options = options or QueueOptions.from_settings()
        self._clock = clock
        self._session_factory = create_session_factory(store)
        self._metrics = metrics or get_metrics()

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.options.retry_delay)

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[MessageRepository]:
        async with session_scope(self._session_factory) as session:
            yield MessageRepository(session, clock=self._clock)

    async def publish(
        self,
        event: EventDefinition | str,
        properties: Any,
        metadata: Any = None,
    ) -> str:
        """
        Validate and enqueue one message.

        A bare type string stores ``properties`` as JSON without validation;
        an event definition validates them first.

        Args:
            event: Event definition or bare type name.
            properties: The message payload.
            metadata: Metadata for definitions that validate it.

        Returns:
            The new message id.

        Raises:
            EventValidationError: If the payload is rejected. Nothing is written.
        """
        definition = resolve(event)
        created = definition.create(properties, metadata)
        body = definition.encode(created.properties)

        with get_tracer().start_as_current_span(SPAN_PUBLISH_MESSAGE) as span:
            span.set_attribute("queue", self.name)
            span.set_attribute("type", created.type)
            try:
                async with self._repository() as repo:
                    message_id = await repo.enqueue(self.name, created.type, body)
            except SQLAlchemyError:
                logger.exception(
                    "Failed to publish message",
                    extra={"queue": self.name, "type": created.type},
                )
                raise

        self._metrics.record_published(self.name, created.type)
        logger.info(
            "Published message",
            extra={"queue": self.name, "message_id": message_id, "type": created.type},
        )
        return message_id

    async def receive(
        self,
        types: Iterable[str],
        lease: timedelta | None = None,
    ) -> ClaimedMessage | None:
        """
        Claim one message of the given types, if any is eligible.

        Args:
            types: Accepted message types.
            lease: Lease duration. Defaults to the queue's retry delay.
        """
        types = list(types)
        with get_tracer().start_as_current_span(SPAN_CLAIM_MESSAGE):
            try:
                async with self._repository() as repo:
                    message = await repo.claim(
                        self.name,
                        types,
                        lease=self.lease if lease is None else lease,
                        max_retries=self.options.max_retries,
                    )
            except SQLAlchemyError:
                logger.exception(
                    "Failed to claim message",
                    extra={"queue": self.name, "types": types},
                )
                raise

        if message is not None:
            self._metrics.record_claimed(self.name, message.type)
        return message

    async def acknowledge(self, message_id: str) -> str | None:
        """Delete a message. Unknown or already deleted ids return None."""
        try:
            async with self._repository() as repo:
                return await repo.acknowledge(self.name, message_id)
        except SQLAlchemyError:
            logger.exception(
                "Failed to acknowledge message",
                extra={"queue": self.name, "message_id": message_id},
            )
            raise

    async def extend_lease(self, message_id: str, timeout: datetime) -> str | None:
        """Move a message's visibility deadline forward to ``timeout``."""
        try:
            async with self._repository() as repo:
                return await repo.extend_lease(self.name, message_id, timeout)
        except SQLAlchemyError:
            logger.exception(
                "Failed to extend lease",
                extra={"queue": self.name, "message_id": message_id},
            )
            raise

    async def stats(self) -> QueueStats:
        """Count pending, leased and exhausted messages."""
        async with self._repository() as repo:
            stats = await repo.stats(self.name, max_retries=self.options.max_retries)
        self._metrics.update_queue_depth(stats)
        return stats

    def poller(
        self,
        types: Iterable[str],
        stop: asyncio.Event | None = None,
    ) -> Poller:
        """Build a poller over this queue using the queue's retry policy."""
        return Poller(
            self._session_factory,
            queue=self.name,
            types=types,
            lease=self.lease,
            max_retries=self.options.max_retries,
            interval=self.options.poll_interval,
            clock=self._clock,
            stop=stop,
        )

    async def handle(
        self,
        definitions: EventDefinition | str | Iterable[EventDefinition | str],
        handler: Handler,
        *,
        stop: asyncio.Event | None = None,
        failure_policy: FailurePolicy | None = None,
    ) -> None:
        """
        Consume messages of the given types until stopped.

        Each message is decoded through its definition and passed to
        ``handler``. Success acknowledges the message. Failure leaves it
        leased; with ``FailurePolicy.STOP`` the error is re-raised and the
        loop ends, with ``FailurePolicy.CONTINUE`` the loop moves on.

        Args:
            definitions: Event definitions (or bare type names) to accept.
            handler: Async callable receiving a MessageContext.
            stop: Event that ends the loop when set.
            failure_policy: Overrides the queue's failure policy.
        """
        if isinstance(definitions, (EventDefinition, str)):
            definitions = [definitions]
        registry = EventRegistry(definitions)
        policy = failure_policy or self.options.failure_policy

        logger.info(
            "Listening for messages",
            extra={"queue": self.name, "types": registry.types, "failure_policy": str(policy)},
        )

        async for message in self.poller(registry.types, stop=stop):
            self._metrics.record_claimed(self.name, message.type)
            await self._process(message, registry, handler, policy)

    async def _process(
        self,
        message: ClaimedMessage,
        registry: EventRegistry,
        handler: Handler,
        policy: FailurePolicy,
    ) -> bool:
        """Run the handler for one claimed message and acknowledge on success."""
        start_time = time.monotonic()
        log_extra = {
            "queue": self.name,
            "message_id": message.id,
            "type": message.type,
            "received": message.received,
        }

        with get_tracer().start_as_current_span(SPAN_HANDLE_MESSAGE) as span:
            span.set_attribute("queue", self.name)
            span.set_attribute("message_id", message.id)
            span.set_attribute("received", message.received)

            try:
                context = MessageContext(
                    id=message.id,
                    queue=self.name,
                    type=message.type,
                    properties=registry.get(message.type).decode(message.body),
                    received=message.received,
                    max_retries=self.options.max_retries,
                    lease_expires_at=message.lease_expires_at,
                )
                async with self._heartbeat(message.id):
                    await handler(context)
            except Exception as e:
                self._metrics.record_handled(
                    self.name, message.type, False, time.monotonic() - start_time
                )
                logger.exception(
                    "Handler failed",
                    extra={**log_extra, "error": str(e)},
                )
                if policy == FailurePolicy.STOP:
                    raise
                return False

        self._metrics.record_handled(
            self.name, message.type, True, time.monotonic() - start_time
        )
        await self.acknowledge(message.id)
        self._metrics.record_acknowledged(self.name, message.type)
        logger.info("Message handled", extra=log_extra)
        return True

    @asynccontextmanager
    async def _heartbeat(self, message_id: str) -> AsyncGenerator[None]:
        """Keep extending the lease while the block runs, if configured."""
        interval = self.options.heartbeat_interval
        if interval is None:
            yield
            return

        task = asyncio.create_task(self._heartbeat_loop(message_id, interval))
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _heartbeat_loop(self, message_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self.extend_lease(message_id, self._clock() + self.lease)
            except SQLAlchemyError:
                logger.debug(
                    "Heartbeat failed, retrying next beat",
                    extra={"queue": self.name, "message_id": message_id},
                )
                continue
            if extended is None:
                return
            logger.debug(
                "Extended lease",
                extra={"queue": self.name, "message_id": message_id},
            )


async def create_queue(
    store: AsyncEngine | str | Path,
    name: str,
    options: QueueOptions | None = None,
    *,
    clock: Clock = utcnow,
    metrics: MetricsCollector | None = None,
) -> Queue:
    """
    Set up the store and return a queue bound to it.

    Args:
        store: An engine from :func:`open_store`, a database URL or a file path.
        name: The queue name.
        options: Retry and polling policy. Defaults to settings.
        clock: Source of the current time.
        metrics: Metrics collector.

    Raises:
        SchemaSetupError: If the store cannot be set up.
    """
    options = options or QueueOptions.from_settings()

    if isinstance(store, AsyncEngine):
        if options.cache_size is not None:
            logger.warning(
                "cache_size only applies when the queue opens the store itself",
                extra={"queue": name, "cache_size": options.cache_size},
            )
        engine = store
    else:
        engine = open_store(store, cache_size=options.cache_size)

    await setup(engine)
    return Queue(engine, name, options, clock=clock, metrics=metrics)
