"""
SQLAlchemy database models.
Defines the jobs, config and metrics tables.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from queuectl.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    DEFAULT_TIMEOUT_MS,
    JobState,
)
from queuectl.timeutil import utcnow


def generate_job_id() -> str:
    """Generate a new job identifier."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one shell command in the queue.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through this table.

    Key constraints:
    - state transitions follow the JobState state machine
    - locked_by / locked_at are set only while a worker holds the lease
    - next_retry_at is set only while the job is FAILED with a retry pending
    """

    __tablename__ = "jobs"

    # Primary key (client-supplied or generated)
    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        default=generate_job_id,
    )

    # Work definition
    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # State and priority
    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            native_enum=False,
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.PENDING,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )
    timeout_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_TIMEOUT_MS,
    )

    # Scheduling
    run_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Lease
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Timestamps, assigned client-side for microsecond ordering on every backend
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Execution results
    duration_ms: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    output: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        # Candidate polling: filter on state, order by priority then age
        Index(
            "ix_jobs_candidates",
            "state",
            "priority",
            "created_at",
        ),
    )

    @property
    def retries_remaining(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_retries - self.attempts)

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries}, locked_by={self.locked_by})"
        )


class ConfigEntry(Base):
    """Runtime configuration key/value pair (upserted, never versioned)."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Metric(Base):
    """Append-only metric sample. Never updated or deleted."""

    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    value: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("ix_metrics_type_timestamp", "type", "timestamp"),
    )
