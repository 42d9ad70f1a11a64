"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from sqslite.constants import (
    METRIC_HANDLER_DURATION,
    METRIC_HANDLER_FAILURES,
    METRIC_MESSAGES_ACKED,
    METRIC_MESSAGES_CLAIMED,
    METRIC_MESSAGES_PUBLISHED,
    METRIC_QUEUE_DEPTH,
)
from sqslite.types.message import QueueStats

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for queues.

    Collects metrics for:
    - Messages published, claimed and acknowledged
    - Handler failures and duration
    - Queue depth by derived state
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.messages_published = Counter(
            METRIC_MESSAGES_PUBLISHED,
            "Total number of messages published",
            ["queue", "type"],
            registry=self._registry,
        )

        self.messages_claimed = Counter(
            METRIC_MESSAGES_CLAIMED,
            "Total number of messages claimed",
            ["queue", "type"],
            registry=self._registry,
        )

        self.messages_acknowledged = Counter(
            METRIC_MESSAGES_ACKED,
            "Total number of messages acknowledged",
            ["queue", "type"],
            registry=self._registry,
        )

        self.handler_failures = Counter(
            METRIC_HANDLER_FAILURES,
            "Total number of failed handler invocations",
            ["queue", "type"],
            registry=self._registry,
        )

        self.handler_duration = Histogram(
            METRIC_HANDLER_DURATION,
            "Handler execution duration in seconds",
            ["queue", "type", "status"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of messages in the queue by state",
            ["queue", "state"],
            registry=self._registry,
        )

    def record_published(self, queue: str, type: str) -> None:
        self.messages_published.labels(queue=queue, type=type).inc()

    def record_claimed(self, queue: str, type: str) -> None:
        self.messages_claimed.labels(queue=queue, type=type).inc()

    def record_acknowledged(self, queue: str, type: str) -> None:
        self.messages_acknowledged.labels(queue=queue, type=type).inc()

    def record_handled(
        self,
        queue: str,
        type: str,
        success: bool,
        duration_seconds: float,
    ) -> None:
        """Record a handler invocation and its outcome."""
        status = "succeeded" if success else "failed"
        if not success:
            self.handler_failures.labels(queue=queue, type=type).inc()
        self.handler_duration.labels(queue=queue, type=type, status=status).observe(
            duration_seconds
        )

    def update_queue_depth(self, stats: QueueStats) -> None:
        """Update the depth gauges from a stats snapshot."""
        for state, count in stats.by_state().items():
            self.queue_depth.labels(queue=stats.queue, state=str(state)).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
