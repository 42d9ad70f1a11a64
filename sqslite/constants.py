"""
Application constants.
Centralized location for all constant values used across the package.
"""

from enum import StrEnum


class MessageState(StrEnum):
    """
    Derived message states. Never stored; computed from timeout and received.

    State transitions:
    - PENDING -> LEASED (claim)
    - LEASED -> deleted (acknowledge)
    - LEASED -> PENDING (lease expired, retries remain)
    - LEASED -> EXHAUSTED (lease expired, retry ceiling reached)
    """

    PENDING = "pending"
    LEASED = "leased"
    EXHAUSTED = "exhausted"


class FailurePolicy(StrEnum):
    """What the handling loop does when a handler raises."""

    STOP = "stop"
    CONTINUE = "continue"


TABLE_NAME = "sqslite"

# Default values
DEFAULT_CACHE_SIZE = 10_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 10.0

# SQLite expression producing an RFC3339 UTC timestamp with milliseconds
SQL_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ')"

# Metrics names
METRIC_MESSAGES_PUBLISHED = "sqslite_messages_published_total"
METRIC_MESSAGES_CLAIMED = "sqslite_messages_claimed_total"
METRIC_MESSAGES_ACKED = "sqslite_messages_acknowledged_total"
METRIC_HANDLER_FAILURES = "sqslite_handler_failures_total"
METRIC_HANDLER_DURATION = "sqslite_handler_duration_seconds"
METRIC_QUEUE_DEPTH = "sqslite_queue_depth"

# Trace span names
SPAN_PUBLISH_MESSAGE = "publish_message"
SPAN_CLAIM_MESSAGE = "claim_message"
SPAN_HANDLE_MESSAGE = "handle_message"
