"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from cardquest.config import Settings
from cardquest.dependencies import Services, build_services
from cardquest.gamification.seed import seed_achievements
from cardquest.store.memory import InMemoryDocumentStore


class FakeClock:
    """Store clock that only moves when a test advances it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stand-in Redis client; only ``publish`` is used by the engine."""
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, timezone="UTC", daily_goal_target=20)


@pytest.fixture
def services(store: InMemoryDocumentStore, redis_mock: AsyncMock, settings: Settings) -> Services:
    return build_services(store, redis_mock, settings)


@pytest_asyncio.fixture
async def seeded(services: Services) -> Services:
    """Services with the default achievement catalog seeded."""
    await seed_achievements(services.store)
    return services

