"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Callable, Coroutine
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.api.main import create_app
from queuectl.config import get_settings
from queuectl.db import close_db, connection, init_db
from queuectl.db.models import Job
from queuectl.db.repository import JobRepository
from queuectl.types.job import JobSubmission


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """A fresh SQLite file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path,
    database_url: str,
    monkeypatch: pytest.MonkeyPatch,
):
    """Point settings at the per-test database and pid file."""
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("WORKER_PID_FILE", str(tmp_path / ".worker-pids"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db(database_url: str) -> AsyncGenerator[None]:
    """Initialize the global engine and session factory on the test database."""
    await init_db(database_url)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db: None) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with connection.AsyncSessionLocal() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def session_factory(db: None) -> Callable[[], AsyncSession]:
    """Factory for additional independent sessions (one per simulated worker)."""
    return connection.AsyncSessionLocal


@pytest_asyncio.fixture
async def make_job(
    db_session: AsyncSession,
) -> Callable[..., Coroutine[Any, Any, Job]]:
    """Create and commit a job from keyword arguments."""

    async def _make_job(command: str = "echo hello", **kwargs: Any) -> Job:
        job = await JobRepository(db_session).create_job(
            JobSubmission(command=command, **kwargs)
        )
        await db_session.commit()
        return job

    return _make_job


@pytest_asyncio.fixture
async def app(db: None) -> FastAPI:
    """
    Create a FastAPI app for testing.

    ASGITransport does not run the lifespan, so the database is initialized
    by the ``db`` fixture instead.
    """
    return create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
