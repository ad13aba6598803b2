"""
Pytest fixtures for PollGuard tests.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing the app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("POSTGRES_PASSWORD", "test-password")
os.environ.setdefault("POSTGRES_DB", "pollguard_test")
os.environ.setdefault("FRAUD_STORAGE_BACKEND", "memory")
os.environ.setdefault("FRAUD_FAILURE_POLICY", "open")
os.environ.setdefault("FRAUD_IDENTITY_WINDOW", "1d")

from pollguard.repositories.memory import memory_repositories  # noqa: E402
from pollguard.schemas.client import ClientEnvironment  # noqa: E402


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to midday so day rollovers are explicit."""
    return FakeClock(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repos():
    """Fresh in-memory repositories."""
    return memory_repositories()


@pytest.fixture
def environment() -> ClientEnvironment:
    """An ordinary desktop browser."""
    return ClientEnvironment(
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0",
        language="en-US",
        screen_width=1920,
        screen_height=1080,
        timezone_offset=-120,
        platform="Win32",
        canvas_data="data:image/png;base64,iVBORw0KGgo",
    )


@pytest.fixture
def mock_session() -> AsyncMock:
    """Create a mock database session."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock()
    return session


@pytest.fixture
async def app() -> AsyncGenerator[Any, None]:
    """FastAPI application backed by a fresh in-memory store."""
    from pollguard.api.deps import get_captcha_verifier, get_memory_repositories, get_turnstile_client
    from pollguard.main import app as fastapi_app

    get_memory_repositories.cache_clear()
    get_captcha_verifier.cache_clear()
    get_turnstile_client.cache_clear()
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Origin": "http://localhost:3000"},
    ) as ac:
        yield ac
