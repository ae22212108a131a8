"""
Type definitions for queuectl.
Contains input/output type definitions, grouped by module.
"""

from queuectl.types.api import (
    ErrorResponse,
    HealthResponse,
    JobResponse,
    JobStatsResponse,
    MetricBucketResponse,
    MetricPointResponse,
    MetricSeriesResponse,
)
from queuectl.types.job import (
    ExecutionResult,
    JobSubmission,
    RetryDecision,
)
from queuectl.types.metrics import (
    JobStats,
    MetricBucket,
)

__all__ = [
    # API types
    "JobResponse",
    "JobStatsResponse",
    "MetricPointResponse",
    "MetricBucketResponse",
    "MetricSeriesResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobSubmission",
    "ExecutionResult",
    "RetryDecision",
    # Reporting types
    "JobStats",
    "MetricBucket",
]
