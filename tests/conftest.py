"""Shared pytest fixtures for statline-ingest tests."""
import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    from statline.models.models import Base

    # StaticPool keeps a single connection so every query sees the same
    # in-memory database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def test_settings():
    """
    Settings isolated from any .env file.

    Usage:
        def test_something(test_settings):
            settings = test_settings(COMPOSITE_ENABLE_MERGE=True)
    """
    from statline.core.config import Settings

    def _build(**overrides):
        return Settings(_env_file=None, **{"ENVIRONMENT": "test", **overrides})

    return _build


# =============================================================================
# FAKE TIME
# =============================================================================

class FakeClock:
    """Settable naive UTC clock for cache, matcher and calendar tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """
    Monotonic clock plus a sleep that advances it instead of waiting.

    Every requested sleep is recorded so pacing and backoff can be asserted
    without real delays.
    """

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock fixed at 2024-10-03 12:00 UTC (2024 season, week 5)."""
    return FakeClock(datetime(2024, 10, 3, 12, 0))


@pytest.fixture
def fake_monotonic() -> FakeMonotonic:
    return FakeMonotonic()
