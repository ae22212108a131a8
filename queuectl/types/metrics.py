"""
Reporting type definitions.
Read models returned by the store's reporting queries.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class JobStats:
    """Aggregate job counts and average completed duration."""

    total: int
    by_state: dict[str, int] = field(default_factory=dict)
    avg_duration_ms: float = 0.0


@dataclass
class MetricBucket:
    """
    One time bucket of a metric series.
    The bucket covers [bucket_start, bucket_start + bucket width).
    """

    bucket_start: datetime
    count: int
    total: float

    @property
    def average(self) -> float:
        """Average value in the bucket."""
        if self.count == 0:
            return 0.0
        return self.total / self.count
