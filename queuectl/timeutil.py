"""
Time helpers.

All persisted timestamps are naive UTC so that comparisons behave the same on
SQLite (stored as text) and PostgreSQL.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)
