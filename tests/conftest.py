"""
Shared fixtures: in-memory SQLite through aiosqlite, fakeredis behind the
cache client, and a fully wired TripService.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tripshare.api.dependencies import ServiceContainer
from tripshare.config.settings import CacheSettings
from tripshare.core.cache_client import CacheClient
from tripshare.core.db import create_all, make_session_factory
from tripshare.main import create_app
from tripshare.services import (
    CacheCoordinator,
    TripEventPublisher,
    TripRepository,
    TripService,
    UserDirectory,
)

OWNER = "user-owner"
EDITOR = "user-editor"
OUTSIDER = "user-outsider"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def fake_redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache_client(fake_redis):
    return CacheClient(redis_url="redis://fake", redis_client=fake_redis)


@pytest.fixture
def cache_settings():
    return CacheSettings(enabled=True)


@pytest.fixture
def repository(session_factory):
    return TripRepository(session_factory, max_write_retries=3)


@pytest.fixture
def user_directory(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def coordinator(cache_client, cache_settings):
    return CacheCoordinator(cache_client, cache_settings)


@pytest.fixture
def trip_service(repository, user_directory, coordinator, cache_client):
    return TripService(
        repository=repository,
        user_directory=user_directory,
        cache=coordinator,
        publisher=TripEventPublisher(cache_client),
    )


@pytest_asyncio.fixture
async def users(user_directory):
    for user_id in (OWNER, EDITOR, OUTSIDER):
        await user_directory.register(user_id, f"{user_id}@example.com", user_id.title())
    return {"owner": OWNER, "editor": EDITOR, "outsider": OUTSIDER}


@pytest.fixture
def make_trip_data():
    """Factory for valid trip creation payloads."""

    def _make(**overrides):
        start = datetime(2030, 5, 1, tzinfo=timezone.utc)
        data = {
            "title": "Lisbon Weekend",
            "description": "Pastel de nata tour",
            "destination": {"name": "Lisbon", "country": "Portugal", "city": "Lisbon"},
            "start_date": start,
            "end_date": start + timedelta(days=3),
            "budget": {"total": 800, "currency": "EUR"},
            "tags": ["food", "city"],
        }
        data.update(overrides)
        return data

    return _make


@pytest_asyncio.fixture
async def async_client(trip_service):
    app = create_app(ServiceContainer(trip_service))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def authenticated_headers():
    """Headers carrying the identity asserted by the upstream provider."""

    def _headers(user_id: str) -> dict:
        return {"X-User-Id": user_id}

    return _headers
