"""
Unit tests for the tier catalog
"""
import pytest
from sqlalchemy import select, func

from app.core.exceptions import TierNotFound
from app.core.windows import WindowType
from app.models.demo_session import DemoFeatureLimit
from app.models.rate_limit import RateLimit, TierName
from app.schemas.tier import TierLimitsUpdate
from app.services.tier_catalog import TierCatalog, DEFAULT_TIER_LIMITS


@pytest.mark.asyncio
class TestTierCatalog:
    """Test suite for TierCatalog"""

    async def test_seeded_tiers(self, db_session):
        tiers = await TierCatalog(db_session).list_tiers()
        assert {limits.tier for limits in tiers} == {tier.value for tier in TierName}

    async def test_community_limits(self, db_session):
        limits = await TierCatalog(db_session).get_limits("community")

        assert limits.requests_per_minute == 5
        assert limits.requests_per_hour == 50
        assert limits.requests_per_day == 100
        assert limits.max_tokens_per_request == 2000
        assert limits.tokens_per_day == 10000
        assert limits.request_cap(WindowType.HOUR) == 50
        assert limits.is_unlimited is False

    async def test_byok_has_no_daily_token_cap(self, db_session):
        limits = await TierCatalog(db_session).get_limits("byok")
        assert limits.tokens_per_day is None
        assert limits.requests_per_minute == 120

    async def test_admin_is_unlimited(self, db_session):
        limits = await TierCatalog(db_session).get_limits("admin")
        assert limits.is_unlimited is True
        assert limits.max_concurrent_requests == 20

    async def test_unknown_tier_raises(self, db_session):
        catalog = TierCatalog(db_session)
        assert await catalog.find_limits("platinum") is None
        with pytest.raises(TierNotFound) as exc_info:
            await catalog.get_limits("platinum")
        assert exc_info.value.tier == "platinum"

    async def test_seed_is_idempotent(self, db_session):
        catalog = TierCatalog(db_session)
        assert await catalog.seed_defaults() == 0

        count = (await db_session.execute(select(func.count()).select_from(RateLimit))).scalar()
        assert count == len(DEFAULT_TIER_LIMITS)

        features = (await db_session.execute(select(func.count()).select_from(DemoFeatureLimit))).scalar()
        assert features == 7

    async def test_seed_keeps_operator_edits(self, db_session):
        catalog = TierCatalog(db_session)
        await catalog.upsert_tier("community", TierLimitsUpdate(requests_per_minute=7, requests_per_hour=70))

        await catalog.seed_defaults()

        limits = await catalog.get_limits("community")
        assert limits.requests_per_minute == 7

    async def test_upsert_new_tier(self, db_session):
        catalog = TierCatalog(db_session)
        stored = await catalog.upsert_tier("enterprise", TierLimitsUpdate(requests_per_minute=500))

        assert stored.tier == "enterprise"
        assert stored.requests_per_minute == 500
        assert stored.requests_per_hour is None
        assert (await catalog.get_limits("enterprise")).requests_per_minute == 500
