"""
Reporting routes: aggregate stats and persisted metric series.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import METRIC_TYPE_JOB_DURATION
from queuectl.db import get_async_session
from queuectl.db.repository import JobRepository, MetricRepository
from queuectl.types.api import (
    JobStatsResponse,
    MetricBucketResponse,
    MetricPointResponse,
    MetricSeriesResponse,
)

router = APIRouter(prefix="/api", tags=["Reports"])


@router.get(
    "/stats",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Job counts by state and average completed duration.",
)
async def get_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    stats = await JobRepository(session).get_job_stats()
    return JobStatsResponse(
        total=stats.total,
        by_state=stats.by_state,
        avg_duration_ms=stats.avg_duration_ms,
    )


@router.get(
    "/metrics",
    response_model=list[MetricPointResponse],
    summary="Get metric samples",
    description="Raw metric samples of one type within a lookback window.",
)
async def get_metric_samples(
    type: str = Query(default=METRIC_TYPE_JOB_DURATION),
    hours: float = Query(default=24, gt=0),
    session: AsyncSession = Depends(get_async_session),
) -> list[MetricPointResponse]:
    samples = await MetricRepository(session).list_since(type, hours=hours)
    return [MetricPointResponse.model_validate(sample) for sample in samples]


@router.get(
    "/metrics/series",
    response_model=MetricSeriesResponse,
    summary="Get metric series",
    description="Metric samples of one type aggregated into time buckets.",
)
async def get_metric_series(
    type: str = Query(default=METRIC_TYPE_JOB_DURATION),
    hours: float = Query(default=24, gt=0),
    bucket_minutes: int = Query(default=60, ge=1, le=1440),
    session: AsyncSession = Depends(get_async_session),
) -> MetricSeriesResponse:
    """
    Get a time-bucketed metric series.

    Args:
        type: Metric type (job_duration, job_completed, job_failed, ...).
        hours: Lookback window in hours.
        bucket_minutes: Bucket width.
        session: Database session.

    Returns:
        MetricSeriesResponse with non-empty buckets, oldest first.
    """
    buckets = await MetricRepository(session).series(
        type, hours=hours, bucket_minutes=bucket_minutes
    )
    return MetricSeriesResponse(
        type=type,
        hours=hours,
        bucket_minutes=bucket_minutes,
        buckets=[
            MetricBucketResponse(
                bucket_start=bucket.bucket_start,
                count=bucket.count,
                total=bucket.total,
                average=bucket.average,
            )
            for bucket in buckets
        ],
    )
