"""
Message-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from sqslite.config import get_settings
from sqslite.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_DELAY_SECONDS,
    FailurePolicy,
    MessageState,
)


@dataclass(frozen=True)
class ClaimedMessage:
    """
    A row returned by a successful claim.
    The body is still the raw stored bytes.
    """

    id: str
    body: bytes
    received: int
    type: str
    lease_expires_at: datetime


@dataclass
class MessageContext:
    """
    Context passed to message handlers.
    Carries the decoded properties and the delivery bookkeeping.
    """

    id: str
    queue: str
    type: str
    properties: Any
    received: int
    max_retries: int
    lease_expires_at: datetime

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last delivery before the message is exhausted."""
        return self.received >= self.max_retries

    @property
    def remaining_attempts(self) -> int:
        """Get remaining deliveries after this one."""
        return max(0, self.max_retries - self.received)


class QueueOptions(BaseModel):
    """Retry policy and polling behaviour bound to a queue."""

    cache_size: int | None = Field(default=None, gt=0, description="SQLite page cache size")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, description="Claims before a message is exhausted")
    retry_delay: float = Field(
        default=DEFAULT_RETRY_DELAY_SECONDS, ge=0, description="Lease duration in seconds"
    )
    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS, ge=0, description="Seconds to wait after an empty claim"
    )
    heartbeat_interval: float | None = Field(
        default=None, gt=0, description="Extend the lease this often while a handler runs"
    )
    failure_policy: FailurePolicy = FailurePolicy.STOP

    @classmethod
    def from_settings(cls) -> "QueueOptions":
        """Build options from the environment-driven settings."""
        settings = get_settings()
        return cls(
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_seconds,
            poll_interval=settings.poll_interval_seconds,
            heartbeat_interval=settings.heartbeat_interval_seconds,
            failure_policy=settings.failure_policy,
        )


class QueueStats(BaseModel):
    """Message counts for one queue by derived state."""

    queue: str
    pending: int = 0
    leased: int = 0
    exhausted: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.leased + self.exhausted

    def by_state(self) -> dict[MessageState, int]:
        return {
            MessageState.PENDING: self.pending,
            MessageState.LEASED: self.leased,
            MessageState.EXHAUSTED: self.exhausted,
        }
