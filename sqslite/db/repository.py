"""
Message repository for database operations.
Implements the claim/lease engine every queue is built on.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, func, insert, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from sqslite.db.models import Message
from sqslite.timestamps import Clock, from_precise, to_precise, utcnow
from sqslite.types.message import ClaimedMessage, QueueStats

logger = logging.getLogger(__name__)

# Select, lease and return the oldest eligible row in one statement.
# rowid breaks ties between rows created in the same millisecond.
CLAIM_SQL = text("""
    UPDATE sqslite
    SET
        timeout = :timeout,
        received = received + 1
    WHERE id = (
        SELECT id FROM sqslite
        WHERE queue = :queue
        AND type IN (SELECT value FROM json_each(:types))
        AND timeout <= :now
        AND received < :max_retries
        ORDER BY created, rowid
        LIMIT 1
    )
    RETURNING id, body, received, type, timeout
""")


class MessageRepository:
    """
    Repository for queue message operations.

    Implements atomic operations for:
    - Enqueueing a message
    - Claiming the oldest eligible message (select + lease + increment)
    - Acknowledging (deleting) a message
    - Extending a message's lease
    """

    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            clock: Source of the current time when callers pass no ``now``.
        """
        self._session = session
        self._clock = clock

    async def enqueue(
        self,
        queue: str,
        type: str,
        body: bytes,
        now: datetime | None = None,
    ) -> str:
        """
        Insert a new message that is immediately claimable.

        Args:
            queue: The queue name.
            type: Routing tag of the message.
            body: Opaque payload bytes.
            now: Insertion time. Defaults to the repository clock.

        Returns:
            The generated message id.
        """
        if now is None:
            now = self._clock()

        stmt = (
            insert(Message)
            .values(
                queue=queue,
                type=type,
                body=body,
                created=now,
                updated=now,
                timeout=now,
            )
            .returning(Message.id)
        )
        result = await self._session.execute(stmt)
        message_id = result.scalar_one()

        logger.debug(
            "Enqueued message",
            extra={"queue": queue, "message_id": message_id, "type": type},
        )
        return message_id

    async def claim(
        self,
        queue: str,
        types: Iterable[str],
        lease: timedelta,
        max_retries: int,
        now: datetime | None = None,
    ) -> ClaimedMessage | None:
        """
        Lease the oldest eligible message of the given types.

        This is the critical path for delivery. The select, the lease and the
        receive count increment happen in one UPDATE ... RETURNING, so two
        callers can never lease the same row.

        Args:
            queue: The queue name.
            types: Message types the caller can handle.
            lease: How long the message stays invisible to other claimants.
            max_retries: Claims allowed before the message is exhausted.
            now: Current time. Defaults to the repository clock.

        Returns:
            The claimed message, or None if nothing is eligible.
        """
        types = sorted(set(types))
        if not types:
            return None

        if now is None:
            now = self._clock()

        result = await self._session.execute(
            CLAIM_SQL,
            {
                "timeout": to_precise(now + lease),
                "now": to_precise(now),
                "max_retries": max_retries,
                "queue": queue,
                "types": json.dumps(types),
            },
        )
        row = result.first()
        if row is None:
            return None

        logger.debug(
            "Claimed message",
            extra={"queue": queue, "message_id": row.id, "received": row.received},
        )

        return ClaimedMessage(
            id=row.id,
            body=bytes(row.body),
            received=row.received,
            type=row.type,
            lease_expires_at=from_precise(row.timeout),
        )

    async def acknowledge(self, queue: str, message_id: str) -> str | None:
        """
        Delete a message after successful processing.

        Args:
            queue: The queue name.
            message_id: The message id.

        Returns:
            The id if a row was deleted, None if it was already gone.
        """
        stmt = (
            delete(Message)
            .where(and_(Message.queue == queue, Message.id == message_id))
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        deleted = result.scalar_one_or_none()

        if deleted is None:
            logger.debug(
                "Acknowledge matched no message",
                extra={"queue": queue, "message_id": message_id},
            )
        return deleted

    async def extend_lease(
        self,
        queue: str,
        message_id: str,
        timeout: datetime,
    ) -> str | None:
        """
        Push a message's visibility deadline out to ``timeout``.

        The deadline never moves backwards: an earlier ``timeout`` leaves the
        current one in place.

        Args:
            queue: The queue name.
            message_id: The message id.
            timeout: New absolute visibility deadline.

        Returns:
            The id if the message exists, None otherwise.
        """
        stmt = (
            update(Message)
            .where(and_(Message.queue == queue, Message.id == message_id))
            .values(timeout=func.max(Message.timeout, to_precise(timeout)))
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, queue: str, message_id: str) -> Message | None:
        """
        Get a message by id.

        Args:
            queue: The queue name.
            message_id: The message id.

        Returns:
            The Message or None if not found.
        """
        stmt = select(Message).where(
            and_(Message.queue == queue, Message.id == message_id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def stats(
        self,
        queue: str,
        max_retries: int,
        now: datetime | None = None,
    ) -> QueueStats:
        """
        Count messages by derived state.

        Args:
            queue: The queue name.
            max_retries: Retry ceiling used to tell pending from exhausted.
            now: Current time. Defaults to the repository clock.

        Returns:
            Pending, leased and exhausted counts.
        """
        now_text = to_precise(now or self._clock())
        visible = Message.timeout <= now_text

        stmt = select(
            func.count().filter(and_(visible, Message.received < max_retries)),
            func.count().filter(Message.timeout > now_text),
            func.count().filter(and_(visible, Message.received >= max_retries)),
        ).where(Message.queue == queue)

        result = await self._session.execute(stmt)
        pending, leased, exhausted = result.one()
        return QueueStats(
            queue=queue,
            pending=pending or 0,
            leased=leased or 0,
            exhausted=exhausted or 0,
        )
