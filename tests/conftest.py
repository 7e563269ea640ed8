"""Pytest configuration for all tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from funding_platform.core.config import Settings
from funding_platform.infrastructure.auth import (
    AuthUser,
    InMemoryRevocationStore,
    TokenService,
    UserRole,
)
from funding_platform.infrastructure.persistence.database import DatabaseManager

START_TIME = 1_700_000_000


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "testing",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "log_format": "console",
        "log_level": "DEBUG",
        "jwt_access_secret": "test-access-secret-0123456789abcdef",
        "jwt_refresh_secret": "test-refresh-secret-0123456789abcdef",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    """Build testing settings with overrides, ignoring any local .env file."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    """Testing settings with an in-memory SQLite database."""
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRevocationStore:
    return InMemoryRevocationStore()


@pytest.fixture
def token_service(settings, store, clock) -> TokenService:
    return TokenService(store, settings, time_source=clock)


@pytest.fixture
def user() -> AuthUser:
    return AuthUser(
        id="user-1",
        email="applicant@example.org",
        role=UserRole.APPLICANT,
        permissions=["applications:read", "applications:write"],
    )


@pytest_asyncio.fixture
async def db(settings) -> AsyncGenerator[DatabaseManager, None]:
    """Database manager on a fresh in-memory database with all tables."""
    manager = DatabaseManager(settings)
    await manager.create_tables()
    yield manager
    await manager.close_pool()
