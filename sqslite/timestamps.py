"""
Text timestamps stored in the queue table.

Every timestamp is persisted as RFC3339 UTC with millisecond precision
(``2024-01-01T12:00:00.000Z``) so that string order equals time order.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_precise(value: datetime) -> str:
    """
    Format a datetime as RFC3339 UTC text truncated to milliseconds.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def from_precise(value: str) -> datetime:
    """Parse stored RFC3339 text back into an aware UTC datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)
