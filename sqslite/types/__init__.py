"""
Type definitions shared across the queue modules.
"""

from sqslite.types.message import (
    ClaimedMessage,
    MessageContext,
    QueueOptions,
    QueueStats,
)

__all__ = [
    "ClaimedMessage",
    "MessageContext",
    "QueueOptions",
    "QueueStats",
]
