"""
Integration tests for worker functionality.
"""

import asyncio
from collections.abc import Callable
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import METRIC_TYPE_JOB_FAILED, JobState
from queuectl.db.models import Job
from queuectl.db.repository import JobRepository, MetricRepository
from queuectl.errors import OutcomeNotRecordedError
from queuectl.reaper.main import Reaper
from queuectl.timeutil import utcnow
from queuectl.worker.main import Worker


async def _make_retry_due(session: AsyncSession, job_id: str) -> None:
    """Pull next_retry_at into the past so the retry is claimable now."""
    await session.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(next_retry_at=utcnow() - timedelta(seconds=1))
    )
    await session.commit()


class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    @pytest.fixture
    def worker(self, db: None) -> Worker:
        return Worker(worker_id="test-worker", poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_successful_job(
        self,
        repo: JobRepository,
        worker: Worker,
        make_job: Callable,
    ):
        """Test complete job lifecycle: pending -> processing -> completed."""
        job = await make_job("echo hello", max_retries=0, timeout_ms=5000)

        processed = await worker.run_once()

        assert processed == job.id
        completed = await repo.get_job(job.id)
        assert completed.state == JobState.COMPLETED
        assert completed.output == "hello\n"
        assert completed.attempts == 0
        assert completed.locked_by is None
        assert completed.started_at is not None
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_retry_then_dead_letter(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        worker: Worker,
        make_job: Callable,
    ):
        """A failing job backs off 2s then 4s, then lands in the DLQ."""
        job = await make_job("exit 1", max_retries=2)

        # First attempt
        before = utcnow()
        assert await worker.run_once() == job.id
        failed = await repo.get_job(job.id)
        assert failed.state == JobState.FAILED
        assert failed.attempts == 1
        assert failed.error == "exit code 1"
        assert failed.locked_by is None
        assert before + timedelta(seconds=2) <= failed.next_retry_at
        assert failed.next_retry_at <= utcnow() + timedelta(seconds=2)

        # Not due yet: nothing to claim
        assert await worker.run_once() is None

        # Second attempt
        await _make_retry_due(db_session, job.id)
        before = utcnow()
        assert await worker.run_once() == job.id
        failed = await repo.get_job(job.id)
        assert failed.state == JobState.FAILED
        assert failed.attempts == 2
        assert before + timedelta(seconds=4) <= failed.next_retry_at
        assert failed.next_retry_at <= utcnow() + timedelta(seconds=4)

        # Third attempt exceeds max_retries
        await _make_retry_due(db_session, job.id)
        assert await worker.run_once() == job.id
        dead = await repo.get_job(job.id)
        assert dead.state == JobState.DEAD
        assert dead.attempts == 3
        assert dead.next_retry_at is None
        assert dead.locked_by is None

        failures = await MetricRepository(db_session).list_since(METRIC_TYPE_JOB_FAILED)
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(
        self,
        repo: JobRepository,
        worker: Worker,
        make_job: Callable,
    ):
        job = await make_job("sleep 5", max_retries=1, timeout_ms=100)

        assert await worker.run_once() == job.id

        failed = await repo.get_job(job.id)
        assert failed.state == JobState.FAILED
        assert failed.attempts == 1
        assert failed.error == "timed out after 100ms"
        assert failed.duration_ms < 2000

    @pytest.mark.asyncio
    async def test_priority_order(
        self,
        repo: JobRepository,
        worker: Worker,
        make_job: Callable,
    ):
        low = await make_job("echo low")
        high = await make_job("echo high", priority=10)

        assert await worker.run_once() == high.id
        assert await worker.run_once() == low.id
        assert await worker.run_once() is None

    @pytest.mark.asyncio
    async def test_skips_job_leased_by_another_worker(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        worker: Worker,
        make_job: Callable,
    ):
        taken = await make_job("echo taken")
        free = await make_job("echo free")
        assert await repo.try_acquire_lease(taken.id, "other-worker")
        await db_session.commit()

        assert await worker.run_once() == free.id
        assert (await repo.get_job(taken.id)).state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_workers_process_each_job_once(
        self,
        repo: JobRepository,
        make_job: Callable,
    ):
        """Several workers draining one queue never run a job twice."""
        jobs = [await make_job(f"echo {i}") for i in range(6)]
        workers = [Worker(worker_id=f"w{i}", poll_interval=0.01) for i in range(3)]

        async def drain(w: Worker) -> list[str]:
            processed = []
            while (job_id := await w.run_once()) is not None:
                processed.append(job_id)
            return processed

        results = await asyncio.gather(*(drain(w) for w in workers))
        processed = [job_id for batch in results for job_id in batch]

        assert sorted(processed) == sorted(job.id for job in jobs)
        for job in jobs:
            assert (await repo.get_job(job.id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_ends_loop(
        self,
        repo: JobRepository,
        worker: Worker,
        make_job: Callable,
    ):
        """The loop drains the queue and exits at the next iteration boundary."""
        job = await make_job("echo hi")

        task = asyncio.create_task(worker.start())
        for _ in range(200):
            if (await repo.get_job(job.id)).state == JobState.COMPLETED:
                break
            await asyncio.sleep(0.02)

        worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert worker.is_stopping
        assert (await repo.get_job(job.id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_store_error_on_completion_schedules_retry(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        worker: Worker,
        make_job: Callable,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """A completion that cannot be stored counts as a failed attempt."""
        job = await make_job("echo hello", max_retries=2)
        record_completion = JobRepository.record_completion
        calls = 0

        async def flaky_record_completion(self, *args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("database unavailable")
            return await record_completion(self, *args, **kwargs)

        monkeypatch.setattr(JobRepository, "record_completion", flaky_record_completion)

        assert await worker.run_once() == job.id

        failed = await repo.get_job(job.id)
        assert failed.state == JobState.FAILED
        assert failed.attempts == 1
        assert failed.error.startswith("Failed to record result")
        assert failed.next_retry_at is not None
        assert failed.locked_by is None

        await _make_retry_due(db_session, job.id)
        assert await worker.run_once() == job.id
        assert (await repo.get_job(job.id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_unrecordable_outcome_keeps_lease(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
        worker: Worker,
        make_job: Callable,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """When nothing can be stored the job stays leased for the reaper."""
        job = await make_job("echo hello")
        record_completion = JobRepository.record_completion
        schedule_retry = JobRepository.schedule_retry

        async def unavailable(self, *args, **kwargs):
            raise ConnectionError("database unavailable")

        monkeypatch.setattr(JobRepository, "record_completion", unavailable)
        monkeypatch.setattr(JobRepository, "schedule_retry", unavailable)

        with pytest.raises(OutcomeNotRecordedError):
            await worker.run_once()

        stuck = await repo.get_job(job.id)
        assert stuck.state == JobState.PROCESSING
        assert stuck.locked_by == "test-worker"

        monkeypatch.setattr(JobRepository, "record_completion", record_completion)
        monkeypatch.setattr(JobRepository, "schedule_retry", schedule_retry)
        await db_session.execute(
            update(Job)
            .where(Job.id == job.id)
            .values(locked_at=utcnow() - timedelta(hours=2))
        )
        await db_session.commit()

        assert await Reaper(lease_ttl_seconds=3600).run_once() == [job.id]
        assert await worker.run_once() == job.id
        assert (await repo.get_job(job.id)).state == JobState.COMPLETED


class TestReaperIntegration:
    """Integration tests for stale lease reclamation."""

    @pytest.mark.asyncio
    async def test_reaper_returns_crashed_job_to_queue(
        self,
        db_session: AsyncSession,
        make_job: Callable,
    ):
        repo = JobRepository(db_session)
        job = await make_job("echo hi")
        assert await repo.try_acquire_lease(job.id, "crashed-worker")
        await repo.transition_state(job.id, JobState.PROCESSING, worker_id="crashed-worker")
        await db_session.execute(
            update(Job)
            .where(Job.id == job.id)
            .values(locked_at=utcnow() - timedelta(hours=2))
        )
        await db_session.commit()

        reclaimed = await Reaper(lease_ttl_seconds=3600).run_once()

        assert reclaimed == [job.id]
        requeued = await repo.get_job(job.id)
        assert requeued.state == JobState.PENDING
        assert requeued.locked_by is None

        worker = Worker(worker_id="healthy-worker", poll_interval=0.01)
        assert await worker.run_once() == job.id
        assert (await repo.get_job(job.id)).state == JobState.COMPLETED
