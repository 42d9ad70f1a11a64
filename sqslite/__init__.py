"""
sqslite

An embedded SQLite-backed message queue with at-least-once delivery,
visibility timeouts, bounded retries and routing by message type.
"""

__version__ = "1.0.0"

from sqslite.constants import FailurePolicy, MessageState  # noqa: E402
from sqslite.db.connection import open_store, setup  # noqa: E402
from sqslite.events import (  # noqa: E402
    Event,
    EventDefinition,
    EventRegistry,
    builder,
    pydantic_validator,
)
from sqslite.exceptions import (  # noqa: E402
    EventValidationError,
    SchemaSetupError,
    SqsliteError,
    UnknownEventTypeError,
)
from sqslite.poller import Poller  # noqa: E402
from sqslite.queue import Queue, create_queue  # noqa: E402
from sqslite.types.message import (  # noqa: E402
    ClaimedMessage,
    MessageContext,
    QueueOptions,
    QueueStats,
)

__all__ = [
    "__version__",
    "ClaimedMessage",
    "Event",
    "EventDefinition",
    "EventRegistry",
    "EventValidationError",
    "FailurePolicy",
    "MessageContext",
    "MessageState",
    "Poller",
    "Queue",
    "QueueOptions",
    "QueueStats",
    "SchemaSetupError",
    "SqsliteError",
    "UnknownEventTypeError",
    "builder",
    "create_queue",
    "open_store",
    "pydantic_validator",
    "setup",
]
