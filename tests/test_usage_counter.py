"""
Unit tests for the database-backed window counters
"""
import asyncio
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from app.core.config import settings as app_settings
from app.core.windows import WindowType
from app.db.base import Base
from app.models.usage_window import UserRateTracking, DemoRateTracking
from app.schemas.rate_limit import DemoPrincipal, UserPrincipal
from app.services.usage_counter import UsageCounter, get_usage_counter
from app.services.redis_usage_counter import RedisUsageCounter

NOW = datetime(2026, 5, 4, 10, 30, 15)


@pytest.fixture
def user():
    return UserPrincipal(user_id="user-1")


@pytest.mark.asyncio
async def test_increment_creates_window(db_session, user):
    counter = UsageCounter(db_session)

    assert await counter.increment(user, WindowType.MINUTE, NOW) == 1
    assert await counter.increment(user, WindowType.MINUTE, NOW + timedelta(seconds=20)) == 2
    await db_session.commit()

    assert await counter.current_count(user, WindowType.MINUTE, NOW) == 2
    assert await counter.current_count(user, WindowType.HOUR, NOW) == 0


@pytest.mark.asyncio
async def test_increment_all_counts_every_window(db_session, user):
    counter = UsageCounter(db_session)

    counts = await counter.increment_all(user, NOW, tokens_used=100)
    assert counts == {WindowType.MINUTE: 1, WindowType.HOUR: 1, WindowType.DAY: 1}

    counts = await counter.increment_all(user, NOW, tokens_used=50)
    assert counts == {WindowType.MINUTE: 2, WindowType.HOUR: 2, WindowType.DAY: 2}
    await db_session.commit()

    usage = await counter.current_usage(user, NOW)
    assert usage[WindowType.DAY].request_count == 2
    assert usage[WindowType.DAY].token_count == 150
    assert usage[WindowType.MINUTE].window_start == datetime(2026, 5, 4, 10, 30)

    rows = (await db_session.execute(select(func.count()).select_from(UserRateTracking))).scalar()
    assert rows == 3


@pytest.mark.asyncio
async def test_new_minute_starts_from_zero(db_session, user):
    counter = UsageCounter(db_session)
    await counter.increment_all(user, NOW)
    await db_session.commit()

    later = NOW + timedelta(minutes=1)
    usage = await counter.current_usage(user, later)

    assert usage[WindowType.MINUTE].request_count == 0
    assert usage[WindowType.HOUR].request_count == 1
    assert usage[WindowType.DAY].request_count == 1


@pytest.mark.asyncio
async def test_current_usage_without_rows(db_session, user):
    usage = await UsageCounter(db_session).current_usage(user, NOW)
    assert all(window.request_count == 0 and window.token_count == 0 for window in usage.values())


@pytest.mark.asyncio
async def test_demo_counters_use_demo_table(db_session):
    demo = DemoPrincipal(session_id="demo-1", credits_remaining=5)
    counter = UsageCounter(db_session)

    await counter.increment_all(demo, NOW)
    await db_session.commit()

    demo_rows = (await db_session.execute(select(func.count()).select_from(DemoRateTracking))).scalar()
    user_rows = (await db_session.execute(select(func.count()).select_from(UserRateTracking))).scalar()
    assert demo_rows == 3
    assert user_rows == 0


@pytest.mark.asyncio
async def test_principals_are_isolated(db_session, user):
    counter = UsageCounter(db_session)
    other = UserPrincipal(user_id="user-2")

    await counter.increment_all(user, NOW)
    await counter.increment_all(user, NOW)
    await counter.increment_all(other, NOW)
    await db_session.commit()

    assert await counter.current_count(user, WindowType.DAY, NOW) == 2
    assert await counter.current_count(other, WindowType.DAY, NOW) == 1


@pytest.mark.asyncio
async def test_add_tokens_adjusts_without_counting_requests(db_session, user):
    counter = UsageCounter(db_session)
    await counter.increment_all(user, NOW, tokens_used=500)

    await counter.add_tokens(user, NOW, 250)
    await db_session.commit()

    usage = await counter.current_usage(user, NOW)
    assert usage[WindowType.DAY].token_count == 750
    assert usage[WindowType.DAY].request_count == 1


@pytest.mark.asyncio
async def test_add_tokens_never_goes_negative(db_session, user):
    counter = UsageCounter(db_session)
    await counter.increment_all(user, NOW, tokens_used=100)

    await counter.add_tokens(user, NOW, -400)
    await db_session.commit()

    usage = await counter.current_usage(user, NOW)
    assert usage[WindowType.MINUTE].token_count == 0
    assert usage[WindowType.DAY].token_count == 0


@pytest.mark.asyncio
async def test_add_tokens_on_missing_window(db_session, user):
    counter = UsageCounter(db_session)

    await counter.add_tokens(user, NOW, -10)
    await counter.add_tokens(user, NOW + timedelta(hours=2), 40)
    await db_session.commit()

    assert (await counter.current_usage(user, NOW))[WindowType.DAY].token_count == 40
    assert (await counter.current_usage(user, NOW))[WindowType.DAY].request_count == 0


@pytest.mark.asyncio
async def test_get_usage_counter_backend(db_session, monkeypatch):
    assert isinstance(get_usage_counter(db_session), UsageCounter)

    monkeypatch.setattr(app_settings, "USAGE_COUNTER_BACKEND", "redis")
    assert isinstance(get_usage_counter(db_session, redis_client=object()), RedisUsageCounter)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Separate connections per session, so increments really interleave"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'counters.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(file_session_factory, user):
    async def hit():
        async with file_session_factory() as session:
            await UsageCounter(session).increment_all(user, NOW, tokens_used=10)
            await session.commit()

    await asyncio.gather(*(hit() for _ in range(20)))

    async with file_session_factory() as session:
        usage = await UsageCounter(session).current_usage(user, NOW)

    for window_type in WindowType:
        assert usage[window_type].request_count == 20
        assert usage[window_type].token_count == 200
