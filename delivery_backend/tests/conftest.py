"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool, NullPool

from delivery_backend.app.main import app
from delivery_backend.app.db.session import get_db, Base
from delivery_backend.app.core.jwt import create_actor_token
from delivery_backend.app.domain.delivery.events import (
    DeliveryEventPublisher,
    RedisEventBus,
    get_event_publisher,
)
from delivery_backend.app.domain.delivery.lifecycle_service import DeliveryLifecycleService
from delivery_backend.app.domain.delivery.pricing import PricingConfig
from delivery_backend.app.domain.delivery.repository import DeliveryRepository
from delivery_backend.app.models.enums import UserRole
from delivery_backend.app.schemas.delivery import CreateDeliveryRequest

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SENDER_ID = 101
OTHER_SENDER_ID = 102
DRIVER_ID = 201
OTHER_DRIVER_ID = 202

# NYC: lower Manhattan -> Times Square
NYC_PICKUP = (40.7128, -74.0060)
NYC_DROPOFF = (40.7580, -73.9855)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self.fail_publish = False
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def publish(self, channel, message):
        if self.fail_publish or self._closed:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    def messages_on(self, channel):
        return [message for subject, message in self.published if subject == channel]

    async def flushdb(self):
        self.store = {}
        self.published = []

    async def aclose(self):
        self._closed = True


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def race_session_factory(tmp_path):
    """
    File-backed database where every session has its own connection.

    Transactions start with BEGIN IMMEDIATE so concurrent writers queue on
    SQLite's write lock the way row-store writers queue on row locks.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def disable_pysqlite_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
async def publisher(mock_redis):
    publisher = DeliveryEventPublisher(RedisEventBus(mock_redis), source="delivery-service", timeout=1.0)
    yield publisher
    await publisher.drain()


@pytest.fixture
def service(db_session, publisher):
    return DeliveryLifecycleService(DeliveryRepository(db_session), publisher, pricing_config=PricingConfig())


@pytest.fixture
def make_delivery_request():
    """Factory for a valid NYC create request; keyword overrides replace fields."""
    def _make(**overrides) -> CreateDeliveryRequest:
        payload = {
            "pickup_latitude": NYC_PICKUP[0],
            "pickup_longitude": NYC_PICKUP[1],
            "dropoff_latitude": NYC_DROPOFF[0],
            "dropoff_longitude": NYC_DROPOFF[1],
            "package_size": "small",
            "priority": "standard",
            "pickup_address": "1 Centre St, New York, NY",
            "pickup_contact": "Sam Sender",
            "pickup_phone": "+1-212-555-0101",
            "dropoff_address": "1560 Broadway, New York, NY",
            "recipient_name": "Riley Recipient",
            "recipient_phone": "+1-212-555-0199",
            "package_description": "Documents",
            "declared_value": 250.0,
        }
        payload.update(overrides)
        return CreateDeliveryRequest(**payload)
    return _make


async def _client_for(factory, publisher):
    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
async def client(session_factory, publisher):
    """Async client for testing."""
    async with await _client_for(session_factory, publisher) as ac:
        yield ac
    app.dependency_overrides = {}


@pytest.fixture
async def race_client(race_session_factory, publisher):
    """Async client whose requests each get their own database connection."""
    async with await _client_for(race_session_factory, publisher) as ac:
        yield ac
    app.dependency_overrides = {}


def auth_headers(user_id: int, role: UserRole) -> dict:
    return {"Authorization": f"Bearer {create_actor_token(user_id, role)}"}


@pytest.fixture
def sender_headers():
    return auth_headers(SENDER_ID, UserRole.SENDER)


@pytest.fixture
def driver_headers():
    return auth_headers(DRIVER_ID, UserRole.DRIVER)


@pytest.fixture
def other_driver_headers():
    return auth_headers(OTHER_DRIVER_ID, UserRole.DRIVER)
