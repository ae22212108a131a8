"""
Database module.
Contains database connection, models, and repository implementations.
"""

from queuectl.db.connection import (
    close_db,
    get_async_session,
    get_engine,
    get_session_context,
    init_db,
)
from queuectl.db.models import Base, ConfigEntry, Job, Metric

__all__ = [
    "get_async_session",
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "ConfigEntry",
    "Metric",
    "Base",
]
