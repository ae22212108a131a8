"""
Job-related type definitions for internal use.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from queuectl.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    DEFAULT_TIMEOUT_MS,
)


class JobSubmission(BaseModel):
    """
    Input for creating a job.

    Defaults:
    - max_retries: 3
    - priority: 0 (higher is processed first)
    - timeout_ms: 30000
    - id: generated when omitted
    - run_at: None (eligible immediately)

    An empty command is accepted here and rejected by the store with
    InvalidCommandError.
    """

    id: str | None = Field(default=None, min_length=1, max_length=255)
    command: str
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    priority: int = Field(default=DEFAULT_PRIORITY)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    run_at: datetime | None = None

    @field_validator("run_at")
    @classmethod
    def normalize_run_at(cls, value: datetime | None) -> datetime | None:
        """Store run_at as naive UTC, like every other timestamp."""
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value


class ExecutionResult(BaseModel):
    """
    Result of running one command.
    Exactly one of success, non-zero exit, timeout or launch failure.
    """

    success: bool
    output: str = ""
    error: str | None = None
    duration_ms: int = 0
    exit_code: int | None = None
    timed_out: bool = False


class RetryDecision(StrEnum):
    """Outcome of the retry policy for a failed execution."""

    RETRY = "retry"
    DEAD = "dead"
