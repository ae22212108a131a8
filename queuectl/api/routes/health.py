"""
Health and monitoring routes for the dashboard.

/health answers from the job store itself, so a dashboard that cannot reach
the database reports "degraded" rather than failing outright.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl import __version__
from queuectl.constants import JobState
from queuectl.db import get_async_session
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import get_metrics
from queuectl.timeutil import utcnow
from queuectl.types.api import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the job store and report queue depth by state.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Report dashboard and job store status.

    When the store answers, the response carries the number of jobs in each
    state so an operator can spot a growing backlog or DLQ at a glance.
    """
    queue: dict[str, int] | None = None
    try:
        await session.execute(text("SELECT 1"))
        stats = await JobRepository(session).get_job_stats()
        queue = {state.value: stats.by_state.get(state.value, 0) for state in JobState}
        db_status = "healthy"
    except Exception:
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        queue=queue,
        timestamp=utcnow(),
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Check that the dashboard process is serving requests.",
)
async def liveness_check() -> dict:
    """Answer without touching the job store."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose this process's Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose the Prometheus registry of the dashboard process.

    Worker and reaper counters live in their own processes; the persisted
    samples behind /api/metrics/series cover the whole queue.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
