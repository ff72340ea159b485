"""
Window counters stored in the relational database

Every mutation is a single INSERT ... ON CONFLICT DO UPDATE statement, so
concurrent requests for the same principal and window never lose updates.
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import Dict, Iterable
import uuid

from app.core.config import settings
from app.core.windows import WindowType, WINDOW_ORDER, floor_to_window, to_utc_naive
from app.db.session import dialect_name
from app.models.usage_window import UserRateTracking, DemoRateTracking
from app.schemas.rate_limit import Principal, WindowUsage


def tracking_table(principal: Principal):
    """Model class and owner column holding a principal's counters"""
    if principal.kind == "demo":
        return DemoRateTracking, DemoRateTracking.session_id
    return UserRateTracking, UserRateTracking.user_id


class UsageCounter:
    """Fixed-window request and token counters"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self, model):
        if dialect_name(self.db) == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    def _rows(
        self,
        principal: Principal,
        now: datetime,
        window_types: Iterable[WindowType],
        requests: int,
        tokens: int,
    ) -> list:
        _, owner = tracking_table(principal)
        return [
            {
                "id": str(uuid.uuid4()),
                owner.key: principal.principal_id,
                "window_start": floor_to_window(now, window_type),
                "window_type": WindowType(window_type).value,
                "request_count": requests,
                "token_count": tokens,
                "created_at": now,
            }
            for window_type in window_types
        ]

    async def _upsert_requests(
        self,
        principal: Principal,
        now: datetime,
        window_types: Iterable[WindowType],
        tokens_used: int,
    ) -> Dict[WindowType, int]:
        model, owner = tracking_table(principal)
        now = to_utc_naive(now)

        stmt = self._insert(model).values(self._rows(principal, now, window_types, 1, tokens_used))
        stmt = stmt.on_conflict_do_update(
            index_elements=[owner.key, "window_start", "window_type"],
            set_={
                "request_count": model.request_count + 1,
                "token_count": model.token_count + stmt.excluded.token_count,
            },
        ).returning(model.window_type, model.request_count)

        result = await self.db.execute(stmt)
        return {WindowType(row.window_type): row.request_count for row in result.all()}

    async def increment(
        self,
        principal: Principal,
        window_type: WindowType,
        now: datetime,
        tokens_used: int = 0,
    ) -> int:
        """
        Count one request in a single window

        Args:
            principal: User or demo principal
            window_type: Window granularity
            now: Request time
            tokens_used: Tokens to add to the window's token counter

        Returns:
            Request count of the window after the increment
        """
        counts = await self._upsert_requests(principal, now, [WindowType(window_type)], tokens_used)
        return counts[WindowType(window_type)]

    async def increment_all(
        self,
        principal: Principal,
        now: datetime,
        tokens_used: int = 0,
    ) -> Dict[WindowType, int]:
        """Count one request in the minute, hour and day windows at once"""
        return await self._upsert_requests(principal, now, WINDOW_ORDER, tokens_used)

    async def current_usage(self, principal: Principal, now: datetime) -> Dict[WindowType, WindowUsage]:
        """
        Read the minute, hour and day counters in one query

        Windows without a row report zero.
        """
        model, owner = tracking_table(principal)
        now = to_utc_naive(now)
        starts = {window_type: floor_to_window(now, window_type) for window_type in WINDOW_ORDER}

        query = select(model.window_type, model.request_count, model.token_count).where(
            owner == principal.principal_id,
            or_(*[
                and_(model.window_type == window_type.value, model.window_start == start)
                for window_type, start in starts.items()
            ]),
        )
        result = await self.db.execute(query)

        usage = {
            window_type: WindowUsage(window_type=window_type, window_start=start)
            for window_type, start in starts.items()
        }
        for row in result.all():
            window_type = WindowType(row.window_type)
            usage[window_type].request_count = row.request_count or 0
            usage[window_type].token_count = row.token_count or 0
        return usage

    async def current_count(self, principal: Principal, window_type: WindowType, now: datetime) -> int:
        """Request count of the window containing ``now``"""
        model, owner = tracking_table(principal)
        query = select(model.request_count).where(
            owner == principal.principal_id,
            model.window_type == WindowType(window_type).value,
            model.window_start == floor_to_window(now, window_type),
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def add_tokens(self, principal: Principal, now: datetime, tokens_delta: int):
        """
        Adjust token counters of all windows without counting a request

        Negative deltas are allowed; counters never drop below zero.
        """
        if tokens_delta == 0:
            return

        model, owner = tracking_table(principal)
        now = to_utc_naive(now)
        adjusted = model.token_count + tokens_delta

        stmt = self._insert(model).values(self._rows(principal, now, WINDOW_ORDER, 0, max(tokens_delta, 0)))
        stmt = stmt.on_conflict_do_update(
            index_elements=[owner.key, "window_start", "window_type"],
            set_={"token_count": case((adjusted < 0, 0), else_=adjusted)},
        )
        await self.db.execute(stmt)


def get_usage_counter(db: AsyncSession, redis_client=None):
    """
    Counter implementation selected by USAGE_COUNTER_BACKEND

    Args:
        db: Database session (used by the database backend)
        redis_client: Optional redis.asyncio client for the redis backend

    Returns:
        UsageCounter or RedisUsageCounter
    """
    if settings.USAGE_COUNTER_BACKEND == "redis":
        from app.services.redis_usage_counter import RedisUsageCounter, get_redis_client

        return RedisUsageCounter(redis_client or get_redis_client())
    return UsageCounter(db)
