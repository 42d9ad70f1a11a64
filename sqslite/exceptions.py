"""
Exceptions raised by sqslite.
"""

from typing import Any


class SqsliteError(Exception):
    """Base class for all sqslite errors."""


class SchemaSetupError(SqsliteError):
    """Raised when pragmas or schema creation fail on startup."""


class EventValidationError(SqsliteError):
    """Raised when a payload does not pass its event definition's schema."""

    def __init__(self, event_type: str, errors: list[dict[str, Any]]):
        self.event_type = event_type
        self.errors = errors
        super().__init__(f"Invalid payload for event type {event_type!r}: {errors}")


class UnknownEventTypeError(SqsliteError):
    """Raised when a message type has no registered definition or handler."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"No definition registered for event type {event_type!r}")
