"""
Worker process for executing jobs.

The worker polls the queue, leases one job per iteration, runs its command
and records the outcome: completion, a scheduled retry or the dead letter
queue. Each worker is an independent process; the only coordination between
workers is the conditional UPDATE behind JobRepository.try_acquire_lease.
"""

import asyncio
import logging
import os
import signal

from queuectl.config import get_settings
from queuectl.constants import SPAN_ACQUIRE_LEASE, SPAN_EXECUTE_JOB, JobState
from queuectl.db import close_db, get_engine, get_session_context, init_db
from queuectl.db.models import Job
from queuectl.db.repository import JobRepository
from queuectl.errors import OutcomeNotRecordedError
from queuectl.observability.logging import bind_context, setup_logging
from queuectl.observability.metrics import get_metrics
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy
from queuectl.retry import decide_retry
from queuectl.types.job import ExecutionResult, RetryDecision
from queuectl.worker.executor import execute_command

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Lease acquisition by compare-and-set, one job per iteration
    - Lease released on every exit path unless the outcome is unrecordable
    - Retry with exponential backoff, then DLQ
    - Graceful shutdown on SIGTERM/SIGINT at iteration boundaries
    """

    def __init__(
        self,
        worker_id: str | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            batch_size: Number of candidates to fetch per poll.
            poll_interval: Seconds between polls when nothing was claimed.
        """
        settings = get_settings()

        self.worker_id = (
            worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        )
        self.batch_size = batch_size or settings.worker_batch_size
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )

        self._shutdown = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def is_stopping(self) -> bool:
        """True once a shutdown was requested."""
        return self._shutdown.is_set()

    async def start(self) -> None:
        """Run the polling loop until stop() is called."""
        bind_context(worker_id=self.worker_id)
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "batch_size": self.batch_size},
        )

        while not self._shutdown.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                # Store unavailable or similar: back off and try again
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                processed = None

            if processed is None:
                await self._idle()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    def stop(self) -> None:
        """
        Request a graceful stop.

        The flag is checked between iterations; a command that is already
        running is allowed to finish (or time out).
        """
        if not self._shutdown.is_set():
            logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._shutdown.set()

    async def _idle(self) -> None:
        """Sleep for the poll interval, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self.poll_interval)
        except TimeoutError:
            pass

    async def run_once(self) -> str | None:
        """
        Run one iteration: fetch candidates, lease one, execute it, record
        the outcome, release the lease.

        If the outcome cannot be stored at all the lease is kept, leaving the
        job visible to the stale lease reaper instead of stranding it.

        Returns:
            The ID of the processed job, or None if nothing was claimed.
        """
        async with get_session_context() as session:
            candidates = await JobRepository(session).fetch_candidates(
                limit=self.batch_size
            )

        for candidate in candidates:
            if not await self._try_lease(candidate.id):
                continue

            try:
                await self._process(candidate.id)
            except OutcomeNotRecordedError:
                logger.error(
                    "Keeping lease on job with unrecorded outcome",
                    extra={"job_id": candidate.id, "worker_id": self.worker_id},
                )
                raise
            except BaseException:
                await self._release(candidate.id)
                raise
            await self._release(candidate.id)
            return candidate.id

        return None

    async def _try_lease(self, job_id: str) -> bool:
        """Attempt the lease in its own short transaction."""
        with get_tracer().start_as_current_span(SPAN_ACQUIRE_LEASE) as span:
            span.set_attribute("job_id", job_id)
            span.set_attribute("worker_id", self.worker_id)

            async with get_session_context() as session:
                acquired = await JobRepository(session).try_acquire_lease(
                    job_id, self.worker_id
                )
            span.set_attribute("acquired", acquired)

        if acquired:
            self._metrics.record_lease_acquired(self.worker_id)
        else:
            self._metrics.record_lease_race_lost(self.worker_id)
            logger.debug(
                "Lost lease race, trying next candidate",
                extra={"job_id": job_id, "worker_id": self.worker_id},
            )
        return acquired

    async def _release(self, job_id: str) -> None:
        try:
            async with get_session_context() as session:
                await JobRepository(session).release_lease(job_id, self.worker_id)
        except Exception:
            logger.error(
                "Failed to release lease",
                extra={"job_id": job_id, "worker_id": self.worker_id},
            )
            raise

    async def _process(self, job_id: str) -> None:
        """
        Execute a leased job.

        Handles the lifecycle:
        1. Transition to PROCESSING
        2. Run the command with the job's timeout
        3. Mark as COMPLETED, or apply the retry policy (FAILED or DEAD)

        A store error while recording the outcome is itself treated as a
        failed attempt.
        """
        async with get_session_context() as session:
            job = await JobRepository(session).transition_state(
                job_id, JobState.PROCESSING, worker_id=self.worker_id
            )

        logger.info(
            "Executing job",
            extra={
                "job_id": job.id,
                "attempt": job.attempts + 1,
                "max_retries": job.max_retries,
                "command": job.command,
            },
        )

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("worker_id", self.worker_id)
            span.set_attribute("attempt", job.attempts + 1)

            result = await self._execute(job)
            span.set_attribute("success", result.success)

        try:
            final_state = await self._finalize(job, result)
        except Exception as e:
            logger.exception(
                "Failed to record job outcome, recording a failure instead",
                extra={"job_id": job.id, "worker_id": self.worker_id},
            )
            fallback = ExecutionResult(
                success=False,
                output=result.output,
                error=f"Failed to record result: {e}",
                duration_ms=result.duration_ms,
            )
            try:
                final_state = await self._finalize(job, fallback)
            except Exception as fallback_error:
                raise OutcomeNotRecordedError(job.id) from fallback_error

        self._metrics.record_job_finished(final_state.value, result.duration_ms)

    async def _execute(self, job: Job) -> ExecutionResult:
        try:
            return await execute_command(job.command, job.timeout_ms)
        except Exception as e:
            logger.exception(
                "Executor raised",
                extra={"job_id": job.id, "error": str(e)},
            )
            return ExecutionResult(success=False, error=f"Executor exception: {e}")

    async def _finalize(self, job: Job, result: ExecutionResult) -> JobState:
        """Record the execution outcome and return the job's new state."""
        async with get_session_context() as session:
            repo = JobRepository(session)

            if result.success:
                await repo.record_completion(
                    job.id,
                    output=result.output,
                    duration_ms=result.duration_ms,
                    worker_id=self.worker_id,
                )
                return JobState.COMPLETED

            attempts = job.attempts + 1
            error = result.error or "Unknown error"
            logger.warning(
                "Job failed",
                extra={
                    "job_id": job.id,
                    "error": error,
                    "attempt": attempts,
                    "timed_out": result.timed_out,
                },
            )

            if decide_retry(attempts, job.max_retries) == RetryDecision.RETRY:
                await repo.schedule_retry(
                    job.id,
                    attempts,
                    error,
                    worker_id=self.worker_id,
                    duration_ms=result.duration_ms,
                )
                return JobState.FAILED

            await repo.move_to_dead(
                job.id,
                error,
                attempts=attempts,
                worker_id=self.worker_id,
                duration_ms=result.duration_ms,
            )
            return JobState.DEAD


async def run_async(worker_id: str | None = None) -> None:
    """Run the worker asynchronously."""
    setup_logging()
    await init_db()
    instrument_sqlalchemy(get_engine())

    worker = Worker(worker_id=worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
