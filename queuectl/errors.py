"""
Errors raised by the job store.

Everything under ValidationError is a caller mistake: it is surfaced
immediately and never retried. Command execution failures are not errors at
this level; they are recorded in job state by the worker.
"""


class QueueError(Exception):
    """Base exception for queuectl errors."""


class ValidationError(QueueError):
    """The request was rejected before any job state changed."""


class InvalidCommandError(ValidationError):
    def __init__(self):
        super().__init__("Command cannot be empty")


class DuplicateJobIdError(ValidationError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f'Job with id "{job_id}" already exists')


class InvalidStateError(ValidationError):
    def __init__(self, state: str, valid_states: list[str]):
        self.state = state
        super().__init__(
            f"Invalid state: {state}. Valid states are: {', '.join(valid_states)}"
        )


class AmbiguousJobIdError(ValidationError):
    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(
            f'Multiple jobs found matching "{prefix}". '
            "Please use a longer ID to be more specific."
        )


class JobNotDeadError(ValidationError):
    def __init__(self, job_id: str, current_state: str):
        self.job_id = job_id
        self.current_state = current_state
        super().__init__(
            f"Job {job_id} is not in DEAD state (current state: {current_state}). "
            "Only dead jobs can be retried from DLQ."
        )


class JobNotFoundError(QueueError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f'Job "{job_id}" not found')


class InvalidTransitionError(QueueError):
    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Job {job_id}: cannot transition from {current_state} to {target_state}"
        )


class LeaseNotHeldError(QueueError):
    def __init__(self, job_id: str, worker_id: str, locked_by: str | None):
        self.job_id = job_id
        self.worker_id = worker_id
        self.locked_by = locked_by
        super().__init__(
            f"Worker {worker_id} does not hold the lease on job {job_id} "
            f"(locked by: {locked_by or 'nobody'})"
        )


class OutcomeNotRecordedError(QueueError):
    """A job ran but neither its result nor a fallback failure could be stored."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Outcome of job {job_id} could not be recorded")
