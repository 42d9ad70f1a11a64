"""
Polling loop over the claim engine.

A :class:`Poller` is an async iterable of claimed messages. Each step makes
one claim in its own short transaction; a hit is yielded straight away and a
miss waits ``interval`` seconds before trying again. The wait never holds a
store connection and ends early when the stop event is set.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sqslite.db.connection import session_scope
from sqslite.db.repository import MessageRepository
from sqslite.timestamps import Clock, utcnow
from sqslite.types.message import ClaimedMessage

logger = logging.getLogger(__name__)


class Poller:
    """
    Restartable, cancellable sequence of claimed messages.

    Iterating never ends on its own: stop it with :meth:`stop` (or the
    ``stop`` event passed in), or by leaving the ``async for``. Every new
    ``async for`` starts a fresh loop against the current store state.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        queue: str,
        types: Iterable[str],
        lease: timedelta,
        max_retries: int,
        interval: float,
        clock: Clock = utcnow,
        stop: asyncio.Event | None = None,
    ):
        """
        Args:
            session_factory: Sessions on the queue store.
            queue: The queue name.
            types: Message types to claim.
            lease: Lease applied to each claimed message.
            max_retries: Retry ceiling passed to every claim.
            interval: Seconds to wait after an empty claim.
            clock: Source of the current time for each claim.
            stop: Event that ends the loop when set.
        """
        self._session_factory = session_factory
        self.queue = queue
        self.types = sorted(set(types))
        self.lease = lease
        self.max_retries = max_retries
        self.interval = interval
        self._clock = clock
        self._stop = stop or asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to finish; a pending wait returns immediately."""
        self._stop.set()

    async def claim(self) -> ClaimedMessage | None:
        """Make a single claim attempt."""
        async with session_scope(self._session_factory) as session:
            repo = MessageRepository(session, clock=self._clock)
            return await repo.claim(
                self.queue,
                self.types,
                lease=self.lease,
                max_retries=self.max_retries,
            )

    def __aiter__(self) -> AsyncIterator[ClaimedMessage]:
        return self._poll()

    async def _poll(self) -> AsyncIterator[ClaimedMessage]:
        logger.debug(
            "Poller started",
            extra={"queue": self.queue, "types": self.types, "interval": self.interval},
        )
        while not self._stop.is_set():
            message = await self.claim()
            if message is not None:
                yield message
                continue

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.debug("Poller stopped", extra={"queue": self.queue})
