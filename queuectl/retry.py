"""
Retry policy.

Pure functions mapping a failure count to a backoff delay and to the
retry-or-dead-letter decision. No I/O happens here; the backoff base is read
from the config table by the caller and passed in.
"""

import logging
from datetime import datetime, timedelta

from queuectl.constants import DEFAULT_BACKOFF_BASE
from queuectl.timeutil import utcnow
from queuectl.types.job import RetryDecision

logger = logging.getLogger(__name__)


def backoff_delay(attempts: int, base: float = DEFAULT_BACKOFF_BASE) -> float:
    """
    Seconds to wait before the next attempt.

    Formula:
        delay = base ** attempts

    Args:
        attempts: Failure count after the current failure (1 for the first).
        base: Backoff base. Values > 1 make the delay strictly increasing.

    Returns:
        Delay in seconds.
    """
    return float(base) ** max(attempts, 0)


def next_retry_at(
    attempts: int,
    base: float = DEFAULT_BACKOFF_BASE,
    now: datetime | None = None,
) -> datetime:
    """Timestamp after which a failed job becomes eligible again."""
    if now is None:
        now = utcnow()
    return now + timedelta(seconds=backoff_delay(attempts, base))


def decide_retry(attempts: int, max_retries: int) -> RetryDecision:
    """
    Decide what happens after a failed execution.

    Args:
        attempts: Failure count including the failure being handled.
        max_retries: The job's retry ceiling.

    Returns:
        RetryDecision.retry when attempts <= max_retries, RetryDecision.dead otherwise.
    """
    if attempts <= max_retries:
        return RetryDecision.RETRY
    return RetryDecision.DEAD


def parse_backoff_base(raw: str | None) -> float:
    """Parse the stored backoff base, falling back to the default."""
    if raw is None:
        return DEFAULT_BACKOFF_BASE
    try:
        base = float(raw)
    except ValueError:
        logger.warning(
            "Invalid backoff_base in config, using default",
            extra={"value": raw, "default": DEFAULT_BACKOFF_BASE},
        )
        return DEFAULT_BACKOFF_BASE
    if base <= 0:
        logger.warning(
            "Non-positive backoff_base in config, using default",
            extra={"value": raw, "default": DEFAULT_BACKOFF_BASE},
        )
        return DEFAULT_BACKOFF_BASE
    return base
