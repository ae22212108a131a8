"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from queuectl.constants import (
    ALLOWED_SOURCE_STATES,
    CONFIG_KEY_BACKOFF_BASE,
    DEFAULT_CANDIDATE_LIMIT,
    METRIC_TYPE_JOB_COMPLETED,
    METRIC_TYPE_JOB_DURATION,
    METRIC_TYPE_JOB_FAILED,
    METRIC_TYPE_JOB_SUBMITTED,
    METRIC_TYPE_LEASE_RECLAIMED,
    PREFIX_MATCH_LIMIT,
    JobState,
)
from queuectl.db.models import ConfigEntry, Job, Metric, generate_job_id
from queuectl.errors import (
    AmbiguousJobIdError,
    DuplicateJobIdError,
    InvalidCommandError,
    InvalidStateError,
    InvalidTransitionError,
    JobNotDeadError,
    JobNotFoundError,
    LeaseNotHeldError,
)
from queuectl.retry import next_retry_at, parse_backoff_base
from queuectl.timeutil import utcnow
from queuectl.types.job import JobSubmission
from queuectl.types.metrics import JobStats, MetricBucket

logger = logging.getLogger(__name__)


def parse_state(name: str | JobState) -> JobState:
    """
    Resolve a state name, case-insensitively.

    Raises:
        InvalidStateError: If the name is not a known state.
    """
    try:
        return JobState(str(name).lower())
    except ValueError:
        raise InvalidStateError(str(name), [s.value for s in JobState]) from None


def _eligible(now: datetime) -> ColumnElement[bool]:
    """Filter matching jobs a worker may claim at ``now``."""
    return and_(
        or_(
            Job.state == JobState.PENDING,
            and_(Job.state == JobState.FAILED, Job.next_retry_at <= now),
        ),
        Job.locked_by.is_(None),
        or_(Job.run_at.is_(None), Job.run_at <= now),
    )


class ConfigRepository:
    """Repository for runtime key/value configuration."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Get a config value, or default when the key is not set."""
        stmt = select(ConfigEntry.value).where(ConfigEntry.key == key)
        result = await self._session.execute(stmt)
        value = result.scalar_one_or_none()
        return default if value is None else value

    async def set(self, key: str, value: str) -> None:
        """
        Insert or update a config value.

        Uses INSERT ... ON CONFLICT DO UPDATE so concurrent setters never
        collide on the primary key.
        """
        now = utcnow()
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        stmt = insert(ConfigEntry).values(key=key, value=str(value), updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        await self._session.execute(stmt)
        logger.info("Config updated", extra={"key": key, "value": value})

    async def list_all(self) -> Sequence[ConfigEntry]:
        """List all config entries ordered by key."""
        result = await self._session.execute(
            select(ConfigEntry).order_by(ConfigEntry.key)
        )
        return result.scalars().all()

    async def get_backoff_base(self) -> float:
        """Get the retry backoff base (default 2)."""
        return parse_backoff_base(await self.get(CONFIG_KEY_BACKOFF_BASE))


class MetricRepository:
    """Repository for append-only metric samples."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(
        self,
        metric_type: str,
        value: float,
        timestamp: datetime | None = None,
    ) -> None:
        """Append a metric sample."""
        self._session.add(
            Metric(type=metric_type, value=value, timestamp=timestamp or utcnow())
        )

    async def list_since(
        self,
        metric_type: str,
        hours: float = 24,
        now: datetime | None = None,
    ) -> Sequence[Metric]:
        """
        Get samples of one type recorded within the last ``hours``.

        Args:
            metric_type: The metric type.
            hours: Lookback window.
            now: Reference time, defaults to the current time.

        Returns:
            Samples ordered oldest first.
        """
        since = (now or utcnow()) - timedelta(hours=hours)
        stmt = (
            select(Metric)
            .where(and_(Metric.type == metric_type, Metric.timestamp >= since))
            .order_by(Metric.timestamp.asc(), Metric.id.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def series(
        self,
        metric_type: str,
        hours: float = 24,
        bucket_minutes: int = 60,
        now: datetime | None = None,
    ) -> list[MetricBucket]:
        """
        Get a time-bucketed series of one metric type.

        Buckets are aligned to multiples of ``bucket_minutes`` since the epoch;
        empty buckets are omitted.
        """
        if bucket_minutes <= 0:
            raise ValueError("bucket_minutes must be positive")

        width = timedelta(minutes=bucket_minutes)
        epoch = datetime(1970, 1, 1)
        buckets: dict[datetime, MetricBucket] = {}

        for sample in await self.list_since(metric_type, hours=hours, now=now):
            start = epoch + ((sample.timestamp - epoch) // width) * width
            bucket = buckets.get(start)
            if bucket is None:
                bucket = buckets[start] = MetricBucket(bucket_start=start, count=0, total=0.0)
            bucket.count += 1
            bucket.total += sample.value

        return [buckets[start] for start in sorted(buckets)]


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission with duplicate-id detection
    - Candidate polling ordered by priority then age
    - Lease acquisition as a single conditional UPDATE (compare-and-set)
    - Guarded status transitions, retry scheduling and dead-lettering

    The caller owns the transaction and commits.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session
        self._config = ConfigRepository(session)
        self._metrics = MetricRepository(session)

    async def create_job(self, submission: JobSubmission) -> Job:
        """
        Create a new job in PENDING.

        Args:
            submission: Command and optional fields, see JobSubmission for defaults.

        Returns:
            The created Job.

        Raises:
            InvalidCommandError: If the command is empty.
            DuplicateJobIdError: If a supplied id already exists.
        """
        if not submission.command.strip():
            raise InvalidCommandError()

        job_id = submission.id or generate_job_id()
        if submission.id is not None and await self.get_job(job_id) is not None:
            raise DuplicateJobIdError(job_id)

        now = utcnow()
        job = Job(
            id=job_id,
            command=submission.command,
            state=JobState.PENDING,
            priority=submission.priority,
            attempts=0,
            max_retries=submission.max_retries,
            timeout_ms=submission.timeout_ms,
            run_at=submission.run_at,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)

        try:
            await self._session.flush()
        except IntegrityError:
            # Lost a race with a concurrent submission of the same id
            await self._session.rollback()
            raise DuplicateJobIdError(job_id) from None

        await self._metrics.record(METRIC_TYPE_JOB_SUBMITTED, 1, now)
        logger.info(
            "Created new job",
            extra={"job_id": job_id, "priority": job.priority, "run_at": job.run_at},
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by exact ID.

        Args:
            job_id: The job ID.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_job(self, id_or_prefix: str) -> Job | None:
        """
        Get a job by exact ID or by a unique ID prefix.

        An exact match always wins. Otherwise at most two prefix matches are
        fetched, which is enough to tell a unique prefix from an ambiguous one.

        Returns:
            The Job or None if nothing matches.

        Raises:
            AmbiguousJobIdError: If the prefix matches more than one job.
        """
        if not id_or_prefix:
            return None

        exact = await self.get_job(id_or_prefix)
        if exact is not None:
            return exact

        stmt = (
            select(Job)
            .where(Job.id.startswith(id_or_prefix, autoescape=True))
            .order_by(Job.id)
            .limit(PREFIX_MATCH_LIMIT)
        )
        result = await self._session.execute(stmt)
        matches = result.scalars().all()

        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousJobIdError(id_or_prefix)
        return matches[0]

    async def list_jobs(self, limit: int | None = None) -> Sequence[Job]:
        """List all jobs, newest first."""
        stmt = select(Job).order_by(Job.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_jobs_by_state(
        self,
        state: str | JobState,
        limit: int | None = None,
    ) -> Sequence[Job]:
        """
        List jobs in one state, newest first.

        Raises:
            InvalidStateError: If the state name is unknown.
        """
        job_state = parse_state(state)
        stmt = (
            select(Job)
            .where(Job.state == job_state)
            .order_by(Job.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_dead_jobs(self) -> Sequence[Job]:
        """List dead-lettered jobs, most recently updated first."""
        stmt = (
            select(Job)
            .where(Job.state == JobState.DEAD)
            .order_by(Job.updated_at.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def fetch_candidates(
        self,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
        now: datetime | None = None,
    ) -> Sequence[Job]:
        """
        Fetch jobs a worker may try to claim.

        A job is a candidate when it is PENDING, or FAILED with its retry due,
        is not locked, and its run_at (if any) has passed. Filtering and
        ordering (priority desc, created_at asc) happen in the same query.
        The result is a snapshot; entries may be claimed by the time the
        caller tries to lease them.

        Args:
            limit: Maximum number of candidates.
            now: Reference time, defaults to the current time.

        Returns:
            Candidate jobs in claim order.
        """
        now = now or utcnow()
        stmt = (
            select(Job)
            .where(_eligible(now))
            .order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def try_acquire_lease(
        self,
        job_id: str,
        worker_id: str,
        now: datetime | None = None,
    ) -> bool:
        """
        Try to claim a job for a worker.

        This is the single point of mutual exclusion: one conditional UPDATE
        that sets locked_by only if it is still NULL (and the job is still
        claimable). Concurrent callers on the same job see exactly one success.

        Args:
            job_id: The job ID.
            worker_id: The claiming worker.
            now: Reference time, defaults to the current time.

        Returns:
            True if this worker now holds the lease.
        """
        now = now or utcnow()
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, _eligible(now)))
            .values(locked_by=worker_id, locked_at=now, updated_at=now)
            .returning(Job.id)
        )
        result = await self._session.execute(stmt)
        acquired = result.scalar_one_or_none() is not None

        if acquired:
            logger.debug(
                "Acquired lease",
                extra={"job_id": job_id, "worker_id": worker_id},
            )
        return acquired

    async def release_lease(self, job_id: str, worker_id: str | None = None) -> bool:
        """
        Clear the lease on a job.

        Args:
            job_id: The job ID.
            worker_id: When given, only this holder's lease is cleared.

        Returns:
            True if a lease was cleared.
        """
        conditions = [Job.id == job_id, Job.locked_by.is_not(None)]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)

        result = await self._session.execute(
            update(Job)
            .where(and_(*conditions))
            .values(locked_by=None, locked_at=None, updated_at=utcnow())
            .returning(Job.id)
        )
        released = result.scalar_one_or_none() is not None
        if not released and worker_id is not None:
            logger.warning(
                "Lease no longer held at release",
                extra={"job_id": job_id, "worker_id": worker_id},
            )
        else:
            logger.debug("Released lease", extra={"job_id": job_id})
        return released

    async def _guarded_update(
        self,
        job_id: str,
        new_state: JobState,
        values: dict[str, Any],
        worker_id: str | None = None,
    ) -> Job:
        """
        Apply a state transition only along an allowed edge.

        When worker_id is given the update additionally requires that worker
        to hold the lease.

        Raises:
            JobNotFoundError: If the job does not exist.
            LeaseNotHeldError: If worker_id does not hold the lease.
            InvalidTransitionError: If the current state has no edge to new_state.
        """
        filters = [
            Job.id == job_id,
            Job.state.in_(sorted(ALLOWED_SOURCE_STATES[new_state])),
        ]
        if worker_id is not None:
            filters.append(Job.locked_by == worker_id)

        stmt = (
            update(Job)
            .where(and_(*filters))
            .values(state=new_state, **values)
            .returning(Job)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        if job is not None:
            return job

        current = await self.get_job(job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        if worker_id is not None and current.locked_by != worker_id:
            raise LeaseNotHeldError(job_id, worker_id, current.locked_by)
        raise InvalidTransitionError(job_id, current.state, new_state)

    async def transition_state(
        self,
        job_id: str,
        new_state: JobState,
        worker_id: str | None = None,
        **fields: Any,
    ) -> Job:
        """
        Move a job to a new state, with ancillary field updates.

        Entering PROCESSING stamps started_at and clears next_retry_at.

        Args:
            job_id: The job ID.
            new_state: Target state.
            worker_id: Optional lease holder to enforce.
            **fields: Extra column values to set.

        Returns:
            The updated Job.
        """
        now = utcnow()
        values: dict[str, Any] = {"updated_at": now, **fields}
        if new_state == JobState.PROCESSING:
            values.setdefault("started_at", now)
            values["next_retry_at"] = None

        job = await self._guarded_update(job_id, new_state, values, worker_id)
        logger.info(
            "Job state changed",
            extra={"job_id": job_id, "state": new_state.value, "worker_id": worker_id},
        )
        return job

    async def record_completion(
        self,
        job_id: str,
        output: str,
        duration_ms: int,
        worker_id: str | None = None,
    ) -> Job:
        """
        Mark a job as successfully completed.

        Also appends job_duration and job_completed metric samples.

        Args:
            job_id: The job UUID.
            output: Captured standard output.
            duration_ms: Execution time.
            worker_id: Optional lease holder to enforce.

        Returns:
            The updated Job.
        """
        now = utcnow()
        job = await self._guarded_update(
            job_id,
            JobState.COMPLETED,
            {
                "output": output,
                "duration_ms": duration_ms,
                "completed_at": now,
                "next_retry_at": None,
                "updated_at": now,
            },
            worker_id,
        )

        await self._metrics.record(METRIC_TYPE_JOB_DURATION, duration_ms, now)
        await self._metrics.record(METRIC_TYPE_JOB_COMPLETED, 1, now)

        logger.info(
            "Job completed successfully",
            extra={"job_id": job_id, "duration_ms": duration_ms},
        )
        return job

    async def schedule_retry(
        self,
        job_id: str,
        attempts: int,
        error: str,
        now: datetime | None = None,
        worker_id: str | None = None,
        duration_ms: int | None = None,
    ) -> Job:
        """
        Mark a job FAILED and schedule its next attempt.

        next_retry_at = now + backoff_base ** attempts seconds, with the
        backoff base read from config (default 2).

        Args:
            job_id: The job ID.
            attempts: Failure count including this failure.
            error: Error message of this failure.
            now: Reference time, defaults to the current time.
            worker_id: Optional lease holder to enforce.
            duration_ms: Optional duration of the failed execution.

        Returns:
            The updated Job.

        Raises:
            ValueError: If attempts exceeds the job's max_retries.
        """
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if attempts > job.max_retries:
            raise ValueError(
                f"attempts={attempts} exceeds max_retries={job.max_retries}; "
                "the job must be dead-lettered instead"
            )

        now = now or utcnow()
        base = await self._config.get_backoff_base()
        retry_at = next_retry_at(attempts, base, now)

        values: dict[str, Any] = {
            "attempts": attempts,
            "error": error,
            "next_retry_at": retry_at,
            "updated_at": now,
        }
        if duration_ms is not None:
            values["duration_ms"] = duration_ms

        job = await self._guarded_update(job_id, JobState.FAILED, values, worker_id)
        logger.info(
            "Job queued for retry",
            extra={
                "job_id": job_id,
                "attempts": attempts,
                "max_retries": job.max_retries,
                "next_retry_at": retry_at.isoformat(),
            },
        )
        return job

    async def move_to_dead(
        self,
        job_id: str,
        error: str,
        attempts: int | None = None,
        worker_id: str | None = None,
        duration_ms: int | None = None,
    ) -> Job:
        """
        Move a job to the dead letter queue. Terminal until re-queued.

        Also appends a job_failed metric sample.

        Args:
            job_id: The job ID.
            error: Final error message.
            attempts: Optional final failure count to record.
            worker_id: Optional lease holder to enforce.
            duration_ms: Optional duration of the failed execution.

        Returns:
            The updated Job.
        """
        now = utcnow()
        values: dict[str, Any] = {
            "error": error,
            "next_retry_at": None,
            "completed_at": now,
            "updated_at": now,
        }
        if attempts is not None:
            values["attempts"] = attempts
        if duration_ms is not None:
            values["duration_ms"] = duration_ms

        job = await self._guarded_update(job_id, JobState.DEAD, values, worker_id)
        await self._metrics.record(METRIC_TYPE_JOB_FAILED, 1, now)

        logger.warning(
            f"Job moved to DLQ after {job.attempts} attempts",
            extra={"job_id": job_id, "error": error},
        )
        return job

    async def requeue_dead_job(self, id_or_prefix: str) -> Job:
        """
        Put a dead job back in the queue.

        Resets attempts to 0 and clears error and next_retry_at.

        Args:
            id_or_prefix: Full job ID or a unique prefix.

        Returns:
            The updated Job, now PENDING.

        Raises:
            JobNotFoundError: If nothing matches.
            AmbiguousJobIdError: If the prefix matches several jobs.
            JobNotDeadError: If the job is not DEAD.
        """
        job = await self.find_job(id_or_prefix)
        if job is None:
            raise JobNotFoundError(id_or_prefix)
        if job.state != JobState.DEAD:
            raise JobNotDeadError(job.id, job.state.value)

        try:
            job = await self._guarded_update(
                job.id,
                JobState.PENDING,
                {
                    "attempts": 0,
                    "error": None,
                    "next_retry_at": None,
                    "completed_at": None,
                    "updated_at": utcnow(),
                },
            )
        except InvalidTransitionError as exc:
            raise JobNotDeadError(exc.job_id, exc.current_state) from None

        logger.info("Job retried from DLQ", extra={"job_id": job.id})
        return job

    async def reclaim_stale_leases(
        self,
        older_than: timedelta,
        now: datetime | None = None,
        grace: timedelta = timedelta(seconds=60),
    ) -> list[str]:
        """
        Clear leases whose holder is presumed dead.

        Only the operator-run reaper calls this; workers never expire leases.
        A lease is stale once it is older than both ``older_than`` and the
        job's own timeout plus ``grace``, so a worker still inside its
        timeout keeps its job. PROCESSING jobs go back to PENDING; jobs that
        were leased but never started simply lose the lease.

        Each row is cleared with a compare-and-set on the holder and lease
        time it was read with, so a lease renewed in between is left alone.

        Returns:
            IDs of the reclaimed jobs.
        """
        now = now or utcnow()
        cutoff = now - older_than

        result = await self._session.execute(
            select(Job.id, Job.state, Job.locked_by, Job.locked_at, Job.timeout_ms)
            .where(and_(Job.locked_by.is_not(None), Job.locked_at < cutoff))
            .order_by(Job.locked_at.asc())
        )

        reclaimed: list[str] = []
        for row in result.all():
            held_for = now - row.locked_at
            if held_for <= timedelta(milliseconds=row.timeout_ms) + grace:
                continue

            values: dict[str, Any] = {
                "locked_by": None,
                "locked_at": None,
                "updated_at": now,
            }
            if row.state in ALLOWED_SOURCE_STATES[JobState.PENDING] - {JobState.DEAD}:
                values["state"] = JobState.PENDING

            cleared = await self._session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == row.id,
                        Job.state == row.state,
                        Job.locked_by == row.locked_by,
                        Job.locked_at == row.locked_at,
                    )
                )
                .values(**values)
                .returning(Job.id)
            )
            if cleared.scalar_one_or_none() is not None:
                reclaimed.append(row.id)

        if reclaimed:
            await self._metrics.record(METRIC_TYPE_LEASE_RECLAIMED, len(reclaimed), now)
            logger.warning(
                f"Reclaimed {len(reclaimed)} stale leases",
                extra={"job_ids": reclaimed, "cutoff": cutoff.isoformat()},
            )
        return reclaimed

    async def get_job_stats(self) -> JobStats:
        """
        Get job counts by state and the average completed duration.

        Returns:
            JobStats with every state present in by_state.
        """
        counts = await self._session.execute(
            select(Job.state, func.count()).group_by(Job.state)
        )
        by_state = {state.value: 0 for state in JobState}
        for state, count in counts.all():
            by_state[JobState(state).value] = count

        avg_result = await self._session.execute(
            select(func.avg(Job.duration_ms)).where(
                and_(Job.state == JobState.COMPLETED, Job.duration_ms.is_not(None))
            )
        )
        avg_duration = avg_result.scalar()

        return JobStats(
            total=sum(by_state.values()),
            by_state=by_state,
            avg_duration_ms=float(avg_duration or 0.0),
        )
