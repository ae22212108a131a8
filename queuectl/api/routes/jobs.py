"""
Read-only job routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.db import get_async_session
from queuectl.db.repository import JobRepository
from queuectl.errors import AmbiguousJobIdError, InvalidStateError
from queuectl.types.api import JobResponse

router = APIRouter(prefix="/api/jobs", tags=["Jobs"])

# Listings are capped; the dashboard only shows the most recent jobs
MAX_LISTED_JOBS = 100


@router.get(
    "",
    response_model=list[JobResponse],
    summary="List jobs",
    description="List the most recent jobs, optionally filtered by state.",
)
async def list_jobs(
    state: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> list[JobResponse]:
    """
    List jobs, newest first.

    Args:
        state: Optional state filter (case-insensitive).
        session: Database session.

    Returns:
        Up to 100 jobs.

    Raises:
        HTTPException: 400 if the state name is unknown.
    """
    repo = JobRepository(session)
    try:
        if state:
            jobs = await repo.list_jobs_by_state(state, limit=MAX_LISTED_JOBS)
        else:
            jobs = await repo.list_jobs(limit=MAX_LISTED_JOBS)
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return [JobResponse.model_validate(job) for job in jobs]


@router.get(
    "/dead",
    response_model=list[JobResponse],
    summary="List dead jobs",
    description="List jobs in the dead letter queue.",
)
async def list_dead_jobs(
    session: AsyncSession = Depends(get_async_session),
) -> list[JobResponse]:
    jobs = await JobRepository(session).list_dead_jobs()
    return [JobResponse.model_validate(job) for job in jobs]


@router.get(
    "/{job_ref}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get a job by full ID or by a unique ID prefix.",
)
async def get_job(
    job_ref: str,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID or unique prefix.

    Raises:
        HTTPException: 404 if not found, 409 if the prefix is ambiguous.
    """
    try:
        job = await JobRepository(session).find_job(job_ref)
    except AmbiguousJobIdError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)
