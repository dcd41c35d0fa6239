"""
Test configuration and fixtures.
Uses SQLite in-memory and the in-memory repository for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("APP_SECRET_KEY", "test_secret_key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from refertrack.config import Settings
from refertrack.database import Base
from refertrack.models import User, UserRole
from refertrack.storage.memory import InMemoryReferralRepository
from refertrack.storage.sql import SqlAlchemyReferralRepository
from refertrack.utils.timezone import utc_now


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def settings():
    """Settings with no vendors configured and the background worker off."""
    return Settings(
        _env_file=None,
        app_secret_key="test_secret_key",
        database_url="sqlite+aiosqlite:///:memory:",
        lifecycle_worker_enabled=False,
        auto_reward_on_complete=False,
    )


@pytest.fixture
def memory_repo():
    return InMemoryReferralRepository()


@pytest.fixture
def sql_repo(db):
    return SqlAlchemyReferralRepository(db)


def build_user(role: UserRole, contractor_id=None, **fields) -> User:
    """Unsaved user with every column set explicitly."""
    now = utc_now()
    uid = fields.pop("id", None) or uuid.uuid4()
    defaults = {
        "id": uid,
        "role": role,
        "email": f"{role.value}-{uid.hex[:8]}@example.com",
        "name": "Test User",
        "phone": None,
        "password_hash": None,
        "company_name": "Acme Roofing" if role == UserRole.CONTRACTOR else None,
        "address": None,
        "referral_code": None,
        "contractor_id": contractor_id,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    defaults.update(fields)
    return User(**defaults)


@pytest.fixture
def make_user():
    """Factory: await make_user(repo, role, contractor_id=None, **fields)."""
    async def _make(repository, role: UserRole, contractor_id=None, **fields) -> User:
        return await repository.add_user(build_user(role, contractor_id, **fields))
    return _make


@pytest.fixture
async def contractor(memory_repo, make_user):
    return await make_user(memory_repo, UserRole.CONTRACTOR, name="Casey Contractor")


@pytest.fixture
async def homeowner(memory_repo, make_user, contractor):
    return await make_user(
        memory_repo, UserRole.EXISTING_HOMEOWNER, contractor.id,
        name="Hana Homeowner", email="hana@example.com",
    )


@pytest.fixture
def mock_sms():
    """Mock for async send_sms - prevents real Twilio calls in tests."""
    with patch("refertrack.services.notifications.send_sms", new_callable=AsyncMock) as mock:
        mock.return_value = {
            "sid": "SM_test_123",
            "status": "queued",
            "error": None,
            "error_code": None,
        }
        yield mock


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("refertrack.utils.redis.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.incr = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.eval = AsyncMock(return_value=1)
        mock.return_value = redis_mock
        yield redis_mock
