"""
Prometheus metrics collection.

These are process-local counters for scraping. The durable, append-only
metric samples used by the reporting API live in the metrics table
(see MetricRepository).
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from queuectl.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_FINISHED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_RACE_LOST,
    METRIC_LEASE_RECLAIMED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for queuectl.

    Collects metrics for:
    - Job outcomes (completed, failed, dead) and execution duration
    - Lease acquisitions, lost lease races and reclaimed leases
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Job outcomes counter
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of job executions by resulting state",
            ["state"],
            registry=self._registry,
        )

        # Job duration histogram
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["state"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        # Lease acquired counter
        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        # Lease race lost counter
        self.lease_race_lost = Counter(
            METRIC_LEASE_RACE_LOST,
            "Total number of lease attempts lost to another worker",
            ["worker_id"],
            registry=self._registry,
        )

        # Leases reclaimed by the reaper
        self.lease_reclaimed = Counter(
            METRIC_LEASE_RECLAIMED,
            "Total number of stale leases reclaimed",
            registry=self._registry,
        )

    def record_job_finished(self, state: str, duration_ms: int) -> None:
        """Record the outcome of one execution."""
        self.jobs_finished.labels(state=state).inc()
        self.job_duration.labels(state=state).observe(duration_ms / 1000)

    def record_lease_acquired(self, worker_id: str) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_id=worker_id).inc()

    def record_lease_race_lost(self, worker_id: str) -> None:
        """Record a lease attempt lost to a concurrent worker."""
        self.lease_race_lost.labels(worker_id=worker_id).inc()

    def record_leases_reclaimed(self, count: int) -> None:
        """Record leases reclaimed by the reaper."""
        self.lease_reclaimed.inc(count)

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
