"""
Effective tier resolution and tier-based feature gates
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import Dict, Optional, Tuple
import logging
import time

from app.core.config import settings
from app.core.limits import cap_reached
from app.core.windows import utcnow, to_utc_naive
from app.models.rate_limit import TierName
from app.models.user import User, UserAPIKey
from app.schemas.rate_limit import ByokCredential, DemoPrincipal, Principal, UserPrincipal
from app.schemas.tier import TierCheckResponse
from app.services.tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


def normalize_tier(tier) -> str:
    """Convert tier to lowercase string regardless of whether it's an enum or string"""
    if isinstance(tier, str):
        return tier.lower()
    elif hasattr(tier, 'value'):
        return tier.value.lower()
    else:
        return str(tier).lower()


def resolve_effective_tier(principal: Principal, now: Optional[datetime] = None) -> str:
    """
    Determine the tier that applies to a principal

    First match wins:
    1. admin users get ``admin``
    2. users with a usable BYOK credential get ``byok``
    3. other users get their stored tier, ``community`` when unset
    4. demo sessions get ``demo``

    Args:
        principal: User or demo principal
        now: Evaluation time, used for credential expiry

    Returns:
        Tier name
    """
    if isinstance(principal, DemoPrincipal):
        return TierName.DEMO.value

    now = to_utc_naive(now or utcnow())

    if principal.is_admin:
        return TierName.ADMIN.value

    if any(credential.usable_at(now) for credential in principal.byok_credentials):
        return TierName.BYOK.value

    if not principal.subscription_tier:
        return TierName.COMMUNITY.value
    return normalize_tier(principal.subscription_tier)


class TierService:
    """Loads principals and resolves their tier"""

    # user_id -> (monotonic expiry, principal)
    _principal_cache: Dict[str, Tuple[float, UserPrincipal]] = {}

    def __init__(self, db: AsyncSession):
        self.db = db

    @classmethod
    def invalidate(cls, user_id: Optional[str] = None):
        """Drop one cached principal, or all of them"""
        if user_id is None:
            cls._principal_cache.clear()
        else:
            cls._principal_cache.pop(str(user_id), None)

    async def load_user_principal(self, user_id: str) -> Optional[UserPrincipal]:
        """
        Build a UserPrincipal from the users and user_api_keys tables

        Results are cached for TIER_CACHE_TTL_SECONDS so admin or BYOK
        changes are picked up within that delay.

        Args:
            user_id: User ID

        Returns:
            UserPrincipal, or None if the user does not exist or is inactive
        """
        user_id = str(user_id)
        ttl = settings.TIER_CACHE_TTL_SECONDS

        cached = self._principal_cache.get(user_id)
        if cached and ttl > 0 and cached[0] > time.monotonic():
            return cached[1]

        result = await self.db.execute(
            select(User).options(selectinload(User.api_keys)).where(User.id == user_id)
        )
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            self.invalidate(user_id)
            return None

        principal = UserPrincipal(
            user_id=user.id,
            subscription_tier=user.subscription_tier,
            is_admin=user.is_admin,
            byok_credentials=[
                ByokCredential(is_active=key.is_active, is_valid=key.is_valid, expires_at=key.expires_at)
                for key in user.api_keys
            ],
        )

        if ttl > 0:
            self._remember(user_id, principal, ttl)
        return principal

    @classmethod
    def _remember(cls, user_id: str, principal: UserPrincipal, ttl: int):
        """Cache a principal, evicting expired then oldest entries when full"""
        cache = cls._principal_cache
        now = time.monotonic()
        cache.pop(user_id, None)

        if len(cache) >= settings.TIER_CACHE_MAX_ENTRIES:
            for key in [key for key, (expires, _) in cache.items() if expires <= now]:
                del cache[key]
            while cache and len(cache) >= settings.TIER_CACHE_MAX_ENTRIES:
                cache.pop(next(iter(cache)))

        cache[user_id] = (now + ttl, principal)

    def resolve(self, principal: Principal, now: Optional[datetime] = None) -> str:
        """Effective tier for a principal (see resolve_effective_tier)"""
        return resolve_effective_tier(principal, now)

    async def revoke_byok_key(self, key_id: str) -> bool:
        """
        Deactivate a BYOK credential and forget the owner's cached tier

        Args:
            key_id: UserAPIKey ID

        Returns:
            True if the key existed
        """
        result = await self.db.execute(select(UserAPIKey).where(UserAPIKey.id == str(key_id)))
        key = result.scalar_one_or_none()
        if not key:
            return False

        key.is_active = False
        await self.db.commit()
        self.invalidate(key.user_id)

        logger.info(f"Revoked BYOK key {key_id} for user {key.user_id}")
        return True

    async def check_feature(
        self,
        principal: Principal,
        feature: str,
        current_count: Optional[int] = None,
    ) -> TierCheckResponse:
        """
        Check whether the principal's tier allows a feature

        Args:
            principal: User or demo principal
            feature: 'agents', 'documents' or 'memory'
            current_count: Current number of agents/documents in use, if known

        Returns:
            TierCheckResponse with allowed status and details
        """
        tier = self.resolve(principal)
        limits = await TierCatalog(self.db).get_limits(tier)

        if feature == "memory":
            allowed = limits.agent_memory_enabled
            return TierCheckResponse(
                allowed=allowed,
                reason=None if allowed else f"Agent memory is not available on the {tier} tier",
            )

        if feature == "agents":
            cap = limits.max_agents
        elif feature == "documents":
            cap = limits.max_documents
        else:
            return TierCheckResponse(allowed=False, reason=f"Unknown feature '{feature}'")

        if cap is None:
            return TierCheckResponse(allowed=True, current_usage=current_count, limit=None)

        if current_count is None:
            allowed = cap > 0
        else:
            allowed = not cap_reached(current_count, cap)

        return TierCheckResponse(
            allowed=allowed,
            reason=None if allowed else f"{feature.capitalize()} limit reached ({cap} on the {tier} tier)",
            current_usage=current_count,
            limit=cap,
        )
