"""
Stale lease reaper.

Workers never expire leases on their own, so a worker that crashes while
holding a lease leaves its job locked. The reaper is an operator tool for
that case: it is never started automatically. It clears leases older than
both a TTL and the job's own timeout, and returns PROCESSING jobs to PENDING.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from queuectl.config import get_settings
from queuectl.db import close_db, get_engine, get_session_context, init_db
from queuectl.db.repository import JobRepository
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import get_metrics
from queuectl.observability.tracing import instrument_sqlalchemy

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that reclaims stale job leases.

    Runs periodically to:
    1. Find jobs whose lease outlived the TTL and the job timeout
    2. Return PROCESSING jobs to PENDING and clear the lease
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        interval_seconds: int | None = None,
        lease_ttl_seconds: int | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            interval_seconds: Seconds between reaper runs.
            lease_ttl_seconds: Minimum lease age before a lease is reclaimed.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.lease_ttl = timedelta(
            seconds=lease_ttl_seconds or settings.reaper_lease_ttl_seconds
        )
        self.timeout_grace = timedelta(seconds=settings.reaper_timeout_grace_seconds)
        self._shutdown = asyncio.Event()
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"lease_ttl_seconds": self.lease_ttl.total_seconds()},
        )

        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._shutdown.set()

    async def run_once(self) -> list[str]:
        """
        Reclaim stale leases once (for testing or cron-style execution).

        Returns:
            IDs of the reclaimed jobs.
        """
        async with get_session_context() as session:
            reclaimed = await JobRepository(session).reclaim_stale_leases(
                self.lease_ttl, grace=self.timeout_grace
            )

        if reclaimed:
            self._metrics.record_leases_reclaimed(len(reclaimed))
            logger.info(f"Reclaimed {len(reclaimed)} stale leases")
        return reclaimed


async def run_async(once: bool = False) -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    await init_db()
    instrument_sqlalchemy(get_engine())

    reaper = Reaper()

    if once:
        try:
            await reaper.run_once()
        finally:
            await close_db()
        return

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, reaper.stop)

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
