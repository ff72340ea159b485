"""
Unit tests for database models
"""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta

from app.models import (
    User, UserAPIKey, RateLimit, UserRateTracking, DemoSession, DemoReferral, DemoFeatureLimit, RateLimitEvent,
)

NOW = datetime(2026, 5, 4, 10, 0, 0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_user_defaults(db_session):
    """Test creating a user"""
    user = User(email="test@example.com")

    db_session.add(user)
    await db_session.commit()

    result = await db_session.execute(select(User).where(User.email == "test@example.com"))
    saved_user = result.scalar_one()

    assert saved_user.id is not None
    assert saved_user.subscription_tier is None
    assert saved_user.is_admin is False
    assert saved_user.is_active is True
    assert saved_user.created_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_user_unique_email(db_session):
    """Test that email must be unique"""
    db_session.add(User(email="test@example.com"))
    await db_session.commit()

    db_session.add(User(email="test@example.com"))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_api_key_defaults(db_session):
    """Test creating a BYOK credential"""
    user = User(email="byok@example.com")
    db_session.add(user)
    await db_session.flush()

    key = UserAPIKey(user_id=user.id, provider="anthropic")
    db_session.add(key)
    await db_session.commit()

    assert key.is_active is True
    assert key.is_valid is True
    assert key.expires_at is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_seeded_tiers(db_session):
    """Test that the default catalog is present"""
    result = await db_session.execute(select(RateLimit).where(RateLimit.tier == "byok"))
    byok = result.scalar_one()

    assert byok.requests_per_minute == 120
    assert byok.tokens_per_day is None
    assert byok.agent_memory_enabled is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_usage_window_unique(db_session):
    """Test that a principal has one counter row per window"""
    db_session.add(UserRateTracking(user_id="user-1", window_start=NOW, window_type="minute"))
    db_session.add(UserRateTracking(user_id="user-1", window_start=NOW, window_type="hour"))
    await db_session.commit()

    db_session.add(UserRateTracking(user_id="user-1", window_start=NOW, window_type="minute"))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_usage_window_defaults(db_session):
    """Test that new counters start at zero"""
    row = UserRateTracking(user_id="user-1", window_start=NOW, window_type="day")
    db_session.add(row)
    await db_session.commit()

    assert row.request_count == 0
    assert row.token_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_demo_session_defaults(db_session):
    """Test creating a demo session"""
    session = DemoSession(session_id="tok", expires_at=NOW + timedelta(days=7))
    db_session.add(session)
    await db_session.commit()

    assert session.credits_remaining == 5
    assert session.credits_used == 0
    assert session.referral_code is None
    assert session.referral_credits_earned == 0
    assert session.last_request_at is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_demo_credits_cannot_go_negative(db_session):
    """Test the credit balance check constraint"""
    db_session.add(DemoSession(session_id="tok", credits_remaining=-1, expires_at=NOW))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_referral_code_unique(db_session):
    """Test that referral codes identify a single session"""
    db_session.add(DemoSession(session_id="a", referral_code="DABCDEFG", expires_at=NOW))
    await db_session.commit()

    db_session.add(DemoSession(session_id="b", referral_code="DABCDEFG", expires_at=NOW))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_referral_defaults(db_session):
    """Test creating a referral click"""
    db_session.add(DemoSession(session_id="a", referral_code="DABCDEFG", expires_at=NOW))
    referral = DemoReferral(referrer_session_id="a", referral_code="DABCDEFG")
    db_session.add(referral)
    await db_session.commit()

    assert referral.converted_to_signup is False
    assert referral.credits_awarded == 0
    assert referral.clicked_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_seeded_demo_feature_limits(db_session):
    """Test the default demo feature caps"""
    result = await db_session.execute(select(DemoFeatureLimit).where(DemoFeatureLimit.feature == "projects"))
    assert result.scalar_one().max_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rate_limit_event(db_session):
    """Test creating a violation event"""
    event = RateLimitEvent(
        principal_type="user",
        principal_id="user-1",
        limit_type="requests_per_minute",
        limit_value=5,
        current_value=5,
    )
    db_session.add(event)
    await db_session.commit()

    assert event.id is not None
    assert event.created_at is not None
