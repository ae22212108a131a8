"""
API response type definitions for the read-only reporting surface.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from queuectl.constants import JobState


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    state: JobState
    priority: int
    attempts: int
    max_retries: int
    timeout_ms: int
    run_at: datetime | None
    next_retry_at: datetime | None
    locked_by: str | None
    locked_at: datetime | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
    output: str | None
    error: str | None


class JobStatsResponse(BaseModel):
    """Aggregate counts by state and average completed duration."""

    total: int
    by_state: dict[str, int]
    avg_duration_ms: float


class MetricPointResponse(BaseModel):
    """One persisted metric sample."""

    model_config = ConfigDict(from_attributes=True)

    type: str
    value: float
    timestamp: datetime


class MetricBucketResponse(BaseModel):
    """One bucket of a metric series."""

    bucket_start: datetime
    count: int
    total: float
    average: float


class MetricSeriesResponse(BaseModel):
    """Time-bucketed metric series."""

    type: str
    hours: float
    bucket_minutes: int
    buckets: list[MetricBucketResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    queue: dict[str, int] | None = None
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
