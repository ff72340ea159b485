"""
Tier catalog: the rate_limits table
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
import logging

from app.core.exceptions import TierNotFound
from app.models.rate_limit import RateLimit, TierName
from app.models.demo_session import DemoFeatureLimit
from app.schemas.tier import TierLimits, TierLimitsUpdate

logger = logging.getLogger(__name__)


# (rpm, rph, rpd, max tokens/request, tokens/day, documents, storage MB,
#  concurrent requests, agents, agent memory)
DEFAULT_TIER_LIMITS = {
    TierName.COMMUNITY: (5, 50, 100, 2000, 10000, 0, 0, 1, 0, False),
    TierName.SUBSCRIBER: (20, 200, 500, 4000, 50000, 10, 100, 2, 1, False),
    TierName.PREMIUM: (60, 600, 2000, 8000, 200000, 100, 1000, 5, 6, True),
    TierName.LIFETIME: (60, 600, 2000, 8000, 200000, 100, 1000, 5, 6, True),
    TierName.BYOK: (120, 1200, 10000, 16000, None, 500, 5000, 10, 6, True),
    TierName.ADMIN: (None, None, None, None, None, None, None, 20, 6, True),
    TierName.DEMO: (2, 10, 20, 1000, 5000, 0, 0, 1, 0, False),
}

DEFAULT_DEMO_FEATURE_LIMITS = {
    "chat_messages": (5, "Maximum AI chat messages per session"),
    "projects": (1, "Maximum projects demo user can create"),
    "todos": (5, "Maximum todos per project"),
    "milestones": (2, "Maximum milestones per project"),
    "ai_suggestions": (3, "Maximum AI suggestion requests"),
    "marketing_plans": (0, "Marketing plans locked in demo"),
    "ai_agents": (0, "AI agents locked in demo"),
}

LIMIT_FIELDS = (
    "requests_per_minute",
    "requests_per_hour",
    "requests_per_day",
    "max_tokens_per_request",
    "tokens_per_day",
    "max_documents",
    "max_storage_mb",
    "max_concurrent_requests",
    "max_agents",
    "agent_memory_enabled",
)


def default_limits(tier: TierName) -> TierLimits:
    """Seed values for a tier as a TierLimits"""
    return TierLimits(tier=tier.value, **dict(zip(LIMIT_FIELDS, DEFAULT_TIER_LIMITS[tier])))


class TierCatalog:
    """Read-mostly access to tier limits"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_limits(self, tier: str) -> Optional[TierLimits]:
        """
        Look up limits for a tier

        Args:
            tier: Tier name

        Returns:
            TierLimits, or None when the tier is not in the catalog
        """
        result = await self.db.execute(select(RateLimit).where(RateLimit.tier == str(tier)))
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return TierLimits.model_validate(row)

    async def get_limits(self, tier: str) -> TierLimits:
        """
        Look up limits for a tier

        Raises:
            TierNotFound: If the catalog has no row for the tier
        """
        limits = await self.find_limits(tier)
        if limits is None:
            raise TierNotFound(str(tier))
        return limits

    async def list_tiers(self) -> List[TierLimits]:
        """All configured tiers, ordered by name"""
        result = await self.db.execute(select(RateLimit).order_by(RateLimit.tier))
        return [TierLimits.model_validate(row) for row in result.scalars().all()]

    async def upsert_tier(self, tier: str, limits: TierLimitsUpdate) -> TierLimits:
        """
        Create or replace the limits of a tier

        Args:
            tier: Tier name
            limits: New thresholds (None caps mean unlimited)

        Returns:
            Stored TierLimits
        """
        values = limits.model_dump(include=set(LIMIT_FIELDS))

        result = await self.db.execute(select(RateLimit).where(RateLimit.tier == str(tier)))
        row = result.scalar_one_or_none()
        if row is None:
            row = RateLimit(tier=str(tier), **values)
            self.db.add(row)
            logger.info(f"Created rate limits for tier {tier}")
        else:
            for field, value in values.items():
                setattr(row, field, value)
            logger.info(f"Updated rate limits for tier {tier}")

        await self.db.commit()
        return TierLimits.model_validate(row)

    async def seed_defaults(self) -> int:
        """
        Insert the default tiers and demo feature limits that are missing

        Existing rows are left untouched so operator edits survive restarts.

        Returns:
            Number of tiers created
        """
        result = await self.db.execute(select(RateLimit.tier))
        existing = set(result.scalars().all())

        created = 0
        for tier in DEFAULT_TIER_LIMITS:
            if tier.value in existing:
                continue
            values = default_limits(tier).model_dump(include=set(LIMIT_FIELDS))
            self.db.add(RateLimit(tier=tier.value, **values))
            created += 1

        result = await self.db.execute(select(DemoFeatureLimit.feature))
        existing_features = set(result.scalars().all())
        for feature, (max_count, description) in DEFAULT_DEMO_FEATURE_LIMITS.items():
            if feature not in existing_features:
                self.db.add(DemoFeatureLimit(feature=feature, max_count=max_count, description=description))

        await self.db.commit()

        if created:
            logger.info(f"Seeded {created} rate limit tiers")
        return created
