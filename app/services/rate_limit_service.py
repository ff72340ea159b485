"""
Rate limit evaluation

Combines the tier resolver, the tier catalog and the window counters to
decide whether a request may proceed.
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import update
from redis.exceptions import RedisError
from typing import Optional
import asyncio
import logging

from app.core.config import settings
from app.core.exceptions import StoreUnavailable, TierNotFound
from app.core.limits import cap_reached, exceeds_cap, remaining
from app.core.windows import (
    WindowType,
    WINDOW_ORDER,
    floor_to_window,
    seconds_until_reset,
    to_utc_naive,
    utcnow,
    window_end,
)
from app.models.demo_session import DemoSession
from app.models.rate_limit import TierName
from app.schemas.rate_limit import (
    LimitType,
    Principal,
    RateLimitDecision,
    RequestContext,
    UsageStatus,
    WindowStatus,
)
from app.services.tier_catalog import TierCatalog
from app.services.tier_service import resolve_effective_tier
from app.services.usage_counter import get_usage_counter
from app.services.violation_service import ViolationLog

logger = logging.getLogger(__name__)


class RateLimitService:
    """
    Tier-based rate limit evaluator

    Store failures and timeouts surface as StoreUnavailable. Whether to let
    the request through in that case is the caller's policy decision.
    """

    def __init__(self, db: AsyncSession, counter=None):
        self.db = db
        self.counter = counter or get_usage_counter(db)
        self.catalog = TierCatalog(db)
        self.violations = ViolationLog(db)

    async def _guarded(self, operation):
        """Run a store-bound coroutine under the configured timeout"""
        timeout_ms = settings.RATE_LIMIT_TIMEOUT_MS
        try:
            if timeout_ms and timeout_ms > 0:
                return await asyncio.wait_for(operation, timeout=timeout_ms / 1000)
            return await operation
        except asyncio.TimeoutError as e:
            await self.db.rollback()
            logger.error(f"Rate limit store timed out after {timeout_ms}ms")
            raise StoreUnavailable(f"Rate limit store timed out after {timeout_ms}ms") from e
        except (SQLAlchemyError, RedisError) as e:
            await self.db.rollback()
            logger.error(f"Rate limit store error: {e}")
            raise StoreUnavailable(str(e)) from e

    async def check_and_consume(
        self,
        principal: Principal,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> RateLimitDecision:
        """
        Decide whether a request may proceed and count it if so

        Args:
            principal: User or demo principal
            context: Endpoint, IP and requested token cost
            now: Request time (defaults to the current UTC time)

        Returns:
            RateLimitDecision (allowed, or denied with limit details)

        Raises:
            TierNotFound: If the resolved tier has no catalog entry
            StoreUnavailable: If the store failed or timed out
        """
        context = context or RequestContext()
        now = to_utc_naive(now or utcnow())
        return await self._guarded(self._check_and_consume(principal, context, now))

    async def _check_and_consume(
        self,
        principal: Principal,
        context: RequestContext,
        now: datetime,
    ) -> RateLimitDecision:
        tier = resolve_effective_tier(principal, now)

        # Admin never touches the counters
        if tier == TierName.ADMIN.value:
            return RateLimitDecision.allow(tier)

        try:
            limits = await self.catalog.get_limits(tier)
        except TierNotFound:
            logger.error(f"Tier '{tier}' resolved for {principal.kind} {principal.principal_id} is not in the catalog")
            raise

        if limits.is_unlimited:
            return RateLimitDecision.allow(tier)

        if principal.kind == "demo" and principal.credits_remaining <= 0:
            return await self._deny(
                principal, tier, LimitType.CREDITS_EXHAUSTED, 0, principal.credits_remaining, context, now
            )

        tokens = context.tokens_requested
        if exceeds_cap(tokens, limits.max_tokens_per_request):
            return await self._deny(
                principal, tier, LimitType.MAX_TOKENS_PER_REQUEST, limits.max_tokens_per_request, tokens, context, now
            )

        usage = await self.counter.current_usage(principal, now)

        for window_type in WINDOW_ORDER:
            cap = limits.request_cap(window_type)
            if cap is None:
                continue
            current = usage[window_type].request_count
            if cap_reached(current, cap):
                return await self._deny(
                    principal, tier, LimitType.for_window(window_type), cap, current, context, now, window_type
                )

        tokens_today = usage[WindowType.DAY].token_count
        token_cap = limits.tokens_per_day
        if cap_reached(tokens_today, token_cap) or exceeds_cap(tokens_today + tokens, token_cap):
            return await self._deny(
                principal, tier, LimitType.TOKENS_PER_DAY, token_cap, tokens_today, context, now, WindowType.DAY
            )

        await self.counter.increment_all(principal, now, tokens)

        if principal.kind == "demo":
            await self.db.execute(
                update(DemoSession)
                .where(DemoSession.session_id == principal.session_id)
                .values(last_request_at=now, last_activity=now)
                .execution_options(synchronize_session=False)
            )

        await self.db.commit()
        return RateLimitDecision.allow(tier)

    async def _deny(
        self,
        principal: Principal,
        tier: str,
        limit_type: LimitType,
        limit_value: Optional[int],
        current_value: Optional[int],
        context: RequestContext,
        now: datetime,
        window_type: Optional[WindowType] = None,
    ) -> RateLimitDecision:
        await self.violations.record(
            principal,
            tier=tier,
            limit_type=limit_type,
            limit_value=limit_value,
            current_value=current_value,
            context=context,
            now=now,
        )
        await self.db.commit()

        logger.info(
            f"Rate limit {limit_type.value} hit by {principal.kind} {principal.principal_id} "
            f"(tier: {tier}, {current_value}/{limit_value})"
        )

        if window_type is None:
            return RateLimitDecision.deny(tier, limit_type, limit_value, current_value)
        return RateLimitDecision.deny(
            tier,
            limit_type,
            limit_value,
            current_value,
            resets_at=window_end(now, window_type),
            retry_after_seconds=seconds_until_reset(now, window_type),
        )

    async def record_actual_usage(
        self,
        principal: Principal,
        estimated_tokens: int,
        actual_tokens: int,
        now: Optional[datetime] = None,
        allow_refund: bool = True,
    ) -> int:
        """
        Correct token counters once the real cost of a request is known

        The estimate was counted at check time; only the difference is
        applied here. Refunds (actual below estimate) are only honored when
        the estimate is known to have been counted, i.e. by the middleware.

        Args:
            principal: User or demo principal
            estimated_tokens: Tokens counted by check_and_consume
            actual_tokens: Tokens actually consumed
            now: Time the original request was counted in
            allow_refund: Apply negative deltas; False for caller-supplied estimates

        Returns:
            Applied token delta
        """
        now = to_utc_naive(now or utcnow())
        if resolve_effective_tier(principal, now) == TierName.ADMIN.value:
            return 0

        delta = actual_tokens - estimated_tokens
        if delta < 0 and not allow_refund:
            delta = 0
        if delta == 0:
            return 0

        async def _apply():
            await self.counter.add_tokens(principal, now, delta)
            await self.db.commit()

        await self._guarded(_apply())
        return delta

    async def get_usage_status(self, principal: Principal, now: Optional[datetime] = None) -> UsageStatus:
        """
        Current consumption against each cap

        Args:
            principal: User or demo principal
            now: Evaluation time

        Returns:
            UsageStatus with one entry per window
        """
        now = to_utc_naive(now or utcnow())
        tier = resolve_effective_tier(principal, now)

        if tier == TierName.ADMIN.value:
            return UsageStatus(
                tier=tier,
                windows=[
                    WindowStatus(window_type=window_type, used=0, limit=None, remaining=None,
                                 resets_at=window_end(now, window_type))
                    for window_type in WINDOW_ORDER
                ],
            )

        async def _read():
            limits = await self.catalog.get_limits(tier)
            usage = await self.counter.current_usage(principal, now)
            return limits, usage

        limits, usage = await self._guarded(_read())

        windows = []
        for window_type in WINDOW_ORDER:
            cap = limits.request_cap(window_type)
            used = usage[window_type].request_count
            windows.append(
                WindowStatus(
                    window_type=window_type,
                    used=used,
                    limit=cap,
                    remaining=remaining(used, cap),
                    resets_at=window_end(now, window_type),
                )
            )

        tokens_today = usage[WindowType.DAY].token_count
        return UsageStatus(
            tier=tier,
            windows=windows,
            tokens_today=tokens_today,
            tokens_per_day=limits.tokens_per_day,
            tokens_remaining_today=remaining(tokens_today, limits.tokens_per_day),
        )
