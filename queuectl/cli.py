"""
queuectl command-line interface.

Thin presentation layer over the job store, the worker supervisor, the
reaper and the dashboard API. Validation errors are printed and exit with
status 1.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
import pydantic

from queuectl.constants import CONFIG_KEY_BACKOFF_BASE, JobState
from queuectl.db import close_db, get_session_context, init_db
from queuectl.db.models import Job
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.errors import JobNotFoundError, QueueError
from queuectl.observability.logging import setup_logging
from queuectl.types.job import JobSubmission

T = TypeVar("T")


def _run(operation: Callable[[], Awaitable[T]]) -> T:
    """Run one async store operation with an initialized database."""

    async def runner() -> T:
        await init_db()
        try:
            return await operation()
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except QueueError as e:
        raise click.ClickException(str(e)) from None


def _short(value: str | None, width: int) -> str:
    if not value:
        return "-"
    value = value.replace("\n", " ")
    return value if len(value) <= width else value[: width - 3] + "..."


def _job_line(job: Job) -> str:
    return (
        f"{job.id[:8]}  {job.state.value:<10}  "
        f"attempts={job.attempts}/{job.max_retries}  priority={job.priority}  "
        f"{_short(job.command, 40)}"
    )


def _parse_submission(raw: str) -> JobSubmission:
    """Parse the enqueue JSON; ``timeout`` is accepted as an alias of ``timeout_ms``."""
    try:
        data: dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid job JSON: {e}") from None
    if not isinstance(data, dict):
        raise click.ClickException("Job JSON must be an object")

    if "timeout" in data and "timeout_ms" not in data:
        data["timeout_ms"] = data.pop("timeout")

    try:
        return JobSubmission.model_validate(data)
    except pydantic.ValidationError as e:
        raise click.ClickException(f"Invalid job: {e}") from None


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show log output")
def cli(verbose: bool) -> None:
    """queuectl - durable shell job queue with retries and a DLQ"""
    setup_logging(level="DEBUG" if verbose else "WARNING")


# ---------------- Enqueue ----------------
@cli.command()
@click.argument("job_json")
def enqueue(job_json: str) -> None:
    """Add a new job, e.g. '{"command": "echo hi", "max_retries": 2}'"""
    submission = _parse_submission(job_json)

    async def operation() -> Job:
        async with get_session_context() as session:
            return await JobRepository(session).create_job(submission)

    job = _run(operation)
    click.echo(f"Job {job.id} enqueued")


# ---------------- Query ----------------
@cli.command(name="list")
@click.option("-s", "--state", default=None, help="Filter by state")
def list_jobs(state: str | None) -> None:
    """List jobs, newest first"""

    async def operation():
        async with get_session_context() as session:
            repo = JobRepository(session)
            if state:
                return await repo.list_jobs_by_state(state)
            return await repo.list_jobs()

    jobs = _run(operation)
    if not jobs:
        click.echo("No jobs found")
        return
    for job in jobs:
        click.echo(_job_line(job))


@cli.command()
def status() -> None:
    """Show job counts by state"""

    async def operation():
        async with get_session_context() as session:
            return await JobRepository(session).get_job_stats()

    stats = _run(operation)
    click.echo("Queue Status")
    for state in JobState:
        count = stats.by_state.get(state.value, 0)
        pct = (count / stats.total * 100) if stats.total else 0.0
        click.echo(f"  {state.value:<10} {count:>6}  {pct:5.1f}%")
    click.echo(f"Total: {stats.total} jobs")
    if stats.avg_duration_ms > 0:
        click.echo(f"Avg Duration: {stats.avg_duration_ms / 1000:.2f}s")


@cli.command()
@click.argument("job_id")
def show(job_id: str) -> None:
    """Show job details and output (full ID or unique prefix)"""

    async def operation() -> Job:
        async with get_session_context() as session:
            job = await JobRepository(session).find_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    job = _run(operation)
    click.echo(f"Job {job.id}")
    click.echo(f"  Command:  {job.command}")
    click.echo(f"  State:    {job.state.value}")
    click.echo(
        f"  Attempts: {job.attempts}/{job.max_retries} "
        f"({job.retries_remaining} retries left)"
    )
    click.echo(f"  Priority: {job.priority}")
    click.echo(f"  Timeout:  {job.timeout_ms}ms")
    click.echo(f"  Run at:   {job.run_at or '-'}")
    click.echo(f"  Next retry: {job.next_retry_at or '-'}")
    click.echo(f"  Locked by: {job.locked_by or '-'}")
    click.echo(f"  Created:  {job.created_at}")
    click.echo(f"  Started:  {job.started_at or '-'}")
    click.echo(f"  Finished: {job.completed_at or '-'}")
    if job.duration_ms is not None:
        click.echo(f"  Duration: {job.duration_ms / 1000:.2f}s")
    if job.output:
        click.echo("Output:")
        click.echo(job.output.rstrip("\n"))
    if job.error:
        click.echo("Error:")
        click.echo(job.error.rstrip("\n"))


# ---------------- Dead Letter Queue ----------------
@cli.group()
def dlq() -> None:
    """Dead Letter Queue operations"""


@dlq.command("list")
def dlq_list() -> None:
    """List dead jobs"""

    async def operation():
        async with get_session_context() as session:
            return await JobRepository(session).list_dead_jobs()

    jobs = _run(operation)
    if not jobs:
        click.echo("DLQ is empty")
        return
    for job in jobs:
        click.echo(f"{job.id[:8]}  {_short(job.command, 30)}  {_short(job.error, 50)}")


@dlq.command("retry")
@click.argument("job_id")
def dlq_retry(job_id: str) -> None:
    """Move a dead job back to pending (full ID or unique prefix)"""

    async def operation() -> Job:
        async with get_session_context() as session:
            return await JobRepository(session).requeue_dead_job(job_id)

    job = _run(operation)
    click.echo(f"Job {job.id} back in queue")


# ---------------- Config ----------------
@cli.group()
def config() -> None:
    """Runtime configuration (e.g. backoff_base)"""


@config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Get a config value"""

    async def operation():
        async with get_session_context() as session:
            return await ConfigRepository(session).get(key)

    value = _run(operation)
    click.echo(f"{key} = {value if value is not None else 'not set'}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set a config value"""
    if key == CONFIG_KEY_BACKOFF_BASE:
        try:
            if float(value) <= 0:
                raise ValueError
        except ValueError:
            raise click.ClickException(f"{key} must be a positive number") from None

    async def operation() -> None:
        async with get_session_context() as session:
            await ConfigRepository(session).set(key, value)

    _run(operation)
    click.echo(f"{key} = {value}")


@config.command("list")
def config_list() -> None:
    """List all config values"""

    async def operation():
        async with get_session_context() as session:
            return await ConfigRepository(session).list_all()

    entries = _run(operation)
    if not entries:
        click.echo("No config keys set")
        return
    for entry in entries:
        click.echo(f"{entry.key} = {entry.value}")


# ---------------- Workers ----------------
@cli.group()
def worker() -> None:
    """Manage worker processes"""


@worker.command("run")
@click.option("--worker-id", default=None, help="Worker identity (default: host-pid)")
def worker_run(worker_id: str | None) -> None:
    """Run one worker in the foreground until SIGTERM/SIGINT"""
    from queuectl.worker.main import run_async

    asyncio.run(run_async(worker_id=worker_id))


@worker.command("start")
@click.option("-c", "--count", default=1, type=click.IntRange(min=1), help="Number of workers")
def worker_start(count: int) -> None:
    """Start detached workers"""
    from queuectl.worker.supervisor import start_workers

    pids = start_workers(count)
    click.echo(f"Started {count} worker(s)")
    for i, pid in enumerate(pids, start=1):
        click.echo(f"  Worker {i} (PID: {pid})")


@worker.command("stop")
def worker_stop() -> None:
    """Stop all started workers after their current job"""
    from queuectl.worker.supervisor import stop_workers

    pids = stop_workers()
    click.echo(f"Workers stopped ({len(pids)} signalled)")


# ---------------- Operations ----------------
@cli.command()
@click.option("--once", is_flag=True, help="Reclaim once and exit")
def reaper(once: bool) -> None:
    """Reclaim leases held by crashed workers (operator tool)"""
    from queuectl.reaper.main import run_async

    asyncio.run(run_async(once=once))


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Port")
def dashboard(host: str | None, port: int | None) -> None:
    """Start the read-only dashboard API"""
    from queuectl.api.main import run

    run(host=host, port=port)


if __name__ == "__main__":
    cli()
