"""
SQLAlchemy database models.
Defines the message table backing every queue.
"""

from datetime import datetime

from sqlalchemy import Index, Integer, LargeBinary, String, text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from sqslite.constants import SQL_NOW, TABLE_NAME
from sqslite.timestamps import from_precise, to_precise

# Keeps the updated column current on every mutation
UPDATED_TRIGGER = f"""
    CREATE TRIGGER IF NOT EXISTS {TABLE_NAME}_updated_timestamp
    AFTER UPDATE ON {TABLE_NAME}
    BEGIN
        UPDATE {TABLE_NAME} SET updated = {SQL_NOW} WHERE id = old.id;
    END
"""


class PreciseTimestamp(TypeDecorator):
    """
    Datetime persisted as sortable RFC3339 text with millisecond precision.

    Plain strings are passed through untouched so raw SQL defaults and
    comparisons against stored values keep working.
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value: datetime | str | None, dialect: Dialect) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return to_precise(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return from_precise(value)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Message(Base):
    """
    A message waiting in, or leased from, a queue.

    Key rules:
    - a row is claimable when now >= timeout and received < max_retries
    - timeout only moves forward (claim or lease extension)
    - received only grows, and only through a claim
    - deleting the row is the only way a message leaves the queue
    """

    __tablename__ = TABLE_NAME

    id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        server_default=text("('m_' || lower(hex(randomblob(16))))"),
    )

    created: Mapped[datetime] = mapped_column(
        PreciseTimestamp,
        nullable=False,
        server_default=text(f"({SQL_NOW})"),
    )
    updated: Mapped[datetime] = mapped_column(
        PreciseTimestamp,
        nullable=False,
        server_default=text(f"({SQL_NOW})"),
    )

    queue: Mapped[str] = mapped_column(String, nullable=False)
    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)

    # Visibility deadline
    timeout: Mapped[datetime] = mapped_column(
        PreciseTimestamp,
        nullable=False,
        server_default=text(f"({SQL_NOW})"),
    )
    received: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
    )

    __table_args__ = (
        # Ordered scans per queue
        Index(f"{TABLE_NAME}_queue_created_idx", "queue", "created"),
    )

    def __repr__(self) -> str:
        return (
            f"Message(id={self.id}, queue={self.queue}, type={self.type}, "
            f"received={self.received})"
        )
