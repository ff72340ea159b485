"""
Violation log: append-only record of rejected requests
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional

from app.core.windows import utcnow, to_utc_naive
from app.models.rate_limit_event import RateLimitEvent
from app.schemas.rate_limit import LimitType, Principal, RequestContext


class ViolationLog:
    """Writes and queries rate_limit_events"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        principal: Principal,
        tier: str,
        limit_type: LimitType,
        limit_value: Optional[int],
        current_value: Optional[int],
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> RateLimitEvent:
        """
        Append a violation event

        The caller owns the transaction; nothing is committed here.

        Args:
            principal: Rejected principal
            tier: Tier in effect
            limit_type: Limit that was hit
            limit_value: Configured cap
            current_value: Principal's value at rejection time
            context: Request endpoint and IP
            now: Event time

        Returns:
            The pending RateLimitEvent
        """
        context = context or RequestContext()
        event = RateLimitEvent(
            principal_type=principal.kind,
            principal_id=principal.principal_id,
            limit_type=LimitType(limit_type).value,
            limit_value=limit_value,
            current_value=current_value,
            tier=tier,
            endpoint=context.endpoint[:200] if context.endpoint else None,
            ip_address=context.ip_address,
            created_at=to_utc_naive(now or utcnow()),
        )
        self.db.add(event)
        return event

    async def list_for_principal(
        self,
        principal: Principal,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[RateLimitEvent]:
        """Most recent events for a principal, newest first"""
        query = select(RateLimitEvent).where(
            RateLimitEvent.principal_type == principal.kind,
            RateLimitEvent.principal_id == principal.principal_id,
        )
        if since is not None:
            query = query.where(RateLimitEvent.created_at >= to_utc_naive(since))
        query = query.order_by(RateLimitEvent.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_by_limit_type(self, since: Optional[datetime] = None) -> Dict[str, int]:
        """
        Number of events per limit type

        Args:
            since: Only count events at or after this time

        Returns:
            Dict of limit type to count
        """
        query = select(RateLimitEvent.limit_type, func.count(RateLimitEvent.id).label("count"))
        if since is not None:
            query = query.where(RateLimitEvent.created_at >= to_utc_naive(since))
        query = query.group_by(RateLimitEvent.limit_type)

        result = await self.db.execute(query)
        return {row.limit_type: row.count for row in result.all()}
