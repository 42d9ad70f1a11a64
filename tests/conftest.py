"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from sqslite.db.connection import create_session_factory, open_store, setup
from sqslite.observability.metrics import MetricsCollector


class FakeClock:
    """Manually advanced clock for deterministic lease tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    """Path of a fresh database file for each test."""
    return tmp_path / "queue.db"


@pytest_asyncio.fixture
async def store(database_path: Path) -> AsyncGenerator[AsyncEngine]:
    """An engine on a freshly set-up queue database."""
    engine = open_store(database_path)
    await setup(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(store: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(store)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsCollector:
    """Metrics on a private registry so tests don't collide."""
    return MetricsCollector(registry=metrics_registry)
