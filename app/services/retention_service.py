"""
Service for pruning old usage windows, violation events and demo sessions
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from app.core.config import settings
from app.core.windows import utcnow, to_utc_naive
from app.models.demo_session import DemoSession
from app.models.rate_limit_event import RateLimitEvent
from app.models.usage_window import UserRateTracking, DemoRateTracking
from app.services.demo_session_service import delete_session_rows

logger = logging.getLogger(__name__)


class RetentionService:
    """Retention sweeps, run from background workers only"""

    @classmethod
    async def purge_usage_windows(cls, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Delete rate tracking windows older than USAGE_RETENTION_DAYS

        Args:
            db: Database session
            now: Reference time

        Returns:
            Number of window rows deleted
        """
        now = to_utc_naive(now or utcnow())
        cutoff_date = now - timedelta(days=settings.USAGE_RETENTION_DAYS)

        deleted = 0
        for model in (UserRateTracking, DemoRateTracking):
            result = await db.execute(
                delete(model)
                .where(model.window_start < cutoff_date)
                .execution_options(synchronize_session=False)
            )
            deleted += result.rowcount or 0
        await db.commit()

        if deleted > 0:
            logger.info(f"Purged {deleted} usage windows older than {cutoff_date}")
        return deleted

    @classmethod
    async def purge_violation_events(cls, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Delete violation events older than VIOLATION_RETENTION_DAYS

        Args:
            db: Database session
            now: Reference time

        Returns:
            Number of events deleted
        """
        now = to_utc_naive(now or utcnow())
        cutoff_date = now - timedelta(days=settings.VIOLATION_RETENTION_DAYS)

        result = await db.execute(
            delete(RateLimitEvent)
            .where(RateLimitEvent.created_at < cutoff_date)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        deleted = result.rowcount or 0
        if deleted > 0:
            logger.info(f"Purged {deleted} violation events older than {cutoff_date}")
        return deleted

    @classmethod
    async def purge_expired_sessions(cls, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Delete expired demo sessions with their counters and referrals

        Args:
            db: Database session
            now: Reference time

        Returns:
            Number of demo sessions deleted
        """
        now = to_utc_naive(now or utcnow())
        expired_ids = list(
            (await db.execute(
                select(DemoSession.session_id).where(DemoSession.expires_at <= now)
            )).scalars().all()
        )
        if not expired_ids:
            return 0

        deleted = await delete_session_rows(db, expired_ids)
        await db.commit()

        logger.info(f"Purged {deleted} expired demo sessions")
        return deleted

    @classmethod
    async def run_all(cls, db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Run every retention sweep

        Args:
            db: Database session
            now: Reference time

        Returns:
            Dict of sweep name to rows deleted
        """
        now = to_utc_naive(now or utcnow())
        counts = {
            "usage_windows": await cls.purge_usage_windows(db, now),
            "violation_events": await cls.purge_violation_events(db, now),
            "demo_sessions": await cls.purge_expired_sessions(db, now),
        }
        logger.info(f"Retention sweep complete: {counts}")
        return counts
