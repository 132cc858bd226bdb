"""Service test fixtures: in-memory DB, change feed, services, and HTTP client.

Invariants:
    - Every test gets a fresh in-memory SQLite database (StaticPool: one shared
      connection, so every session sees the same database)
    - The clock is explicit and only moves when a test advances it
    - client patches the module-level db_manager and change_feed singletons,
      the same objects the API dependencies read at request time

Design Decisions:
    - SQLite in-memory: fast, no external dependency; CAS is plain SQL
      (UPDATE ... WHERE version = ?) so it behaves the same as on PostgreSQL
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

import friendsync.infrastructure.change_feed as feed_module
import friendsync.infrastructure.database as db_module
import friendsync.models  # noqa: F401
from friendsync.config import Settings, get_settings
from friendsync.db.base import Base
from friendsync.infrastructure.change_feed import ChangeFeed
from friendsync.infrastructure.database import DatabaseSessionManager
from friendsync.main import app
from friendsync.services.presence_service import PresenceService
from friendsync.services.presence_store import SqlPresenceStore
from friendsync.services.relationship_service import RelationshipService
from friendsync.services.relationship_store import SqlRelationshipStore
from friendsync.services.sync_gateway import SyncGateway


class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
def db_manager(test_engine, test_session_factory):
    manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    manager.engine = test_engine
    manager._session_factory = test_session_factory
    return manager


@pytest.fixture
def settings():
    return Settings(
        mutation_timeout_seconds=2.0,
        cas_max_attempts=5,
        presence_stale_after_seconds=90,
        transport_token="transport-secret",
        sync_queue_maxsize=100,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed(settings):
    return ChangeFeed(settings.sync_queue_maxsize)


@pytest.fixture
def relationship_store(db_manager):
    return SqlRelationshipStore(db_manager)


@pytest.fixture
def presence_store(db_manager):
    return SqlPresenceStore(db_manager)


@pytest.fixture
def relationships(relationship_store, feed, settings, clock):
    return RelationshipService(relationship_store, feed, settings, clock)


@pytest.fixture
def presence(presence_store, relationships, feed, settings, clock):
    return PresenceService(presence_store, relationships, feed, settings, clock)


@pytest.fixture
def gateway(relationships, presence, feed):
    return SyncGateway(relationships, presence, feed)


@pytest.fixture
def befriend(relationships):
    """Make two users friends through the public operations."""

    async def _befriend(a, b):
        await relationships.send_request(a, b)
        return await relationships.accept_request(b, a)

    return _befriend


@pytest.fixture
async def client(db_manager, feed, settings):
    """FastAPI test client wired to the test DB and feed."""
    original_manager = db_module.db_manager
    original_feed = feed_module.change_feed
    db_module.db_manager = db_manager
    feed_module.change_feed = feed
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
    feed_module.change_feed = original_feed
