"""
Shared fixtures: in-memory SQLite database with the tier catalog seeded
"""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from uuid import uuid4

from app.core.config import settings as app_settings
from app.db.base import Base
from app.models import User, UserAPIKey
from app.services.tier_catalog import TierCatalog
from app.services.tier_service import TierService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings and an empty principal cache for every test"""
    monkeypatch.setattr(app_settings, "USAGE_COUNTER_BACKEND", "database")
    monkeypatch.setattr(app_settings, "RATE_LIMIT_TIMEOUT_MS", 5000)
    monkeypatch.setattr(app_settings, "RATE_LIMIT_FAIL_OPEN", True)
    TierService.invalidate()
    yield
    TierService.invalidate()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        await TierCatalog(session).seed_defaults()
    return factory


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_user(db_session):
    """Factory creating a user, optionally with BYOK credentials"""
    async def _make(subscription_tier=None, is_admin=False, is_active=True, api_keys=()):
        user = User(
            id=str(uuid4()),
            email=f"user_{uuid4().hex[:8]}@example.com",
            subscription_tier=subscription_tier,
            is_admin=is_admin,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()

        for key in api_keys:
            key = dict(key)
            db_session.add(UserAPIKey(user_id=user.id, provider=key.pop("provider", "openai"), **key))

        await db_session.commit()
        return user

    return _make
