"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (lease acquired and claimed)
    - FAILED -> PROCESSING (retry due and lease acquired)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> FAILED (failure, attempts <= max_retries)
    - PROCESSING -> DEAD (failure, attempts > max_retries)
    - DEAD -> PENDING (explicit operator re-queue only)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"
    DEAD = "dead"


# Submission defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_PRIORITY = 0
DEFAULT_TIMEOUT_MS = 30_000

# Retry policy
DEFAULT_BACKOFF_BASE = 2.0
CONFIG_KEY_BACKOFF_BASE = "backoff_base"

# Worker defaults
DEFAULT_CANDIDATE_LIMIT = 10

# Prefix lookups only need two rows to tell unique from ambiguous
PREFIX_MATCH_LIMIT = 2

# Persisted metric types
METRIC_TYPE_JOB_SUBMITTED = "job_submitted"
METRIC_TYPE_JOB_DURATION = "job_duration"
METRIC_TYPE_JOB_COMPLETED = "job_completed"
METRIC_TYPE_JOB_FAILED = "job_failed"
METRIC_TYPE_LEASE_RECLAIMED = "lease_reclaimed"

# Prometheus metric names
METRIC_JOBS_FINISHED = "queuectl_jobs_finished_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_LEASE_ACQUIRED = "queuectl_lease_acquired_total"
METRIC_LEASE_RACE_LOST = "queuectl_lease_race_lost_total"
METRIC_LEASE_RECLAIMED = "queuectl_lease_reclaimed_total"

# Trace span names
SPAN_EXECUTE_JOB = "execute_job"
SPAN_ACQUIRE_LEASE = "acquire_lease"

# Directed edges of the job state machine, keyed by target state.
# PROCESSING -> PENDING is taken only by the operator-run lease reaper.
ALLOWED_SOURCE_STATES: dict[JobState, frozenset[JobState]] = {
    JobState.PROCESSING: frozenset({JobState.PENDING, JobState.FAILED}),
    JobState.COMPLETED: frozenset({JobState.PROCESSING}),
    JobState.FAILED: frozenset({JobState.PROCESSING}),
    JobState.DEAD: frozenset({JobState.PROCESSING}),
    JobState.PENDING: frozenset({JobState.DEAD, JobState.PROCESSING}),
}
