"""
Worker process for consuming a queue.

The worker drains one queue through a handler registry until it receives
SIGTERM/SIGINT, then finishes the message in hand and exits.
"""

import asyncio
import logging
import signal

from sqslite.config import get_settings
from sqslite.db.connection import close_db, init_db
from sqslite.observability.logging import bind_context, clear_context, setup_logging
from sqslite.observability.tracing import instrument_sqlalchemy, setup_tracing
from sqslite.queue import Queue
from sqslite.types.message import QueueOptions
from sqslite.worker.handlers import HandlerRegistry

logger = logging.getLogger(__name__)


class Worker:
    """
    Queue consumer driven by a handler registry.

    Features:
    - Claims only the types the registry has handlers for
    - Failure policy and lease heartbeat taken from the queue options
    - Graceful shutdown through a stop event
    """

    def __init__(self, queue: Queue, registry: HandlerRegistry):
        """
        Initialize the worker.

        Args:
            queue: The queue to consume.
            registry: Handlers by event type.
        """
        self.queue = queue
        self.registry = registry
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    async def start(self) -> None:
        """Consume until :meth:`stop` is called."""
        definitions = self.registry.definitions()
        if not definitions:
            raise ValueError("Worker has no registered handlers")

        self._stop.clear()
        logger.info(
            "Worker starting",
            extra={"queue": self.queue.name, "types": self.registry.list_types()},
        )

        try:
            await self.queue.handle(
                definitions,
                self.registry.dispatch,
                stop=self._stop,
            )
        finally:
            logger.info("Worker stopped", extra={"queue": self.queue.name})

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping", extra={"queue": self.queue.name})
        self._stop.set()


async def run_worker(registry: HandlerRegistry, queue_name: str | None = None) -> None:
    """
    Run a worker on the store configured in settings.

    Args:
        registry: Handlers by event type.
        queue_name: Queue to consume. Defaults to settings.
    """
    settings = get_settings()
    setup_logging()
    setup_tracing()

    engine = await init_db()
    instrument_sqlalchemy(engine)

    queue = Queue(engine, queue_name or settings.queue_name, QueueOptions.from_settings())
    worker = Worker(queue, registry)
    bind_context(queue=queue.name)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        clear_context()
        await close_db()


def run(registry: HandlerRegistry, queue_name: str | None = None) -> None:
    """Run the worker until it is signalled to stop."""
    asyncio.run(run_worker(registry, queue_name))
