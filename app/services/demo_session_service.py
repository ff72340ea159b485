"""
Demo session ledger

Anonymous trial sessions with a small credit balance, referral codes and
referral click tracking.
"""
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import logging
import secrets

from app.core.config import settings
from app.core.exceptions import DemoSessionNotFound, DuplicateReferralCode
from app.core.windows import utcnow, to_utc_naive
from app.models.demo_session import DemoSession, DemoReferral, DemoFeatureLimit
from app.models.usage_window import DemoRateTracking
from app.schemas.demo import CreditResult, DemoCredits, DemoFeatureAvailability, ReferralClickResult, ReferralStats
from app.schemas.rate_limit import DemoPrincipal

logger = logging.getLogger(__name__)

REFERRAL_CODE_PREFIX = "D"
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 7


def _new_referral_code() -> str:
    """Random demo referral code, e.g. ``DK7M2QXA``"""
    return REFERRAL_CODE_PREFIX + "".join(
        secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH)
    )


def _new_session_token() -> str:
    return secrets.token_urlsafe(32)


async def delete_session_rows(db: AsyncSession, session_ids) -> int:
    """
    Delete demo sessions along with their counters and referral records

    Args:
        db: Database session (not committed)
        session_ids: List of session IDs or a select() of them

    Returns:
        Number of demo sessions deleted
    """
    await db.execute(
        delete(DemoRateTracking)
        .where(DemoRateTracking.session_id.in_(session_ids))
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(DemoReferral)
        .where(DemoReferral.referrer_session_id.in_(session_ids))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(DemoSession)
        .where(DemoSession.session_id.in_(session_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


class DemoSessionLedger:
    """Credits and referrals for demo sessions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, session_token: str) -> Optional[DemoSession]:
        result = await self.db.execute(
            select(DemoSession)
            .where(DemoSession.session_id == session_token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_by_code(self, referral_code: str, now: datetime) -> Optional[DemoSession]:
        result = await self.db.execute(
            select(DemoSession)
            .where(DemoSession.referral_code == referral_code, DemoSession.expires_at > now)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_session(self, session_token: str, now: Optional[datetime] = None) -> Optional[DemoSession]:
        """
        Look up a live demo session

        Args:
            session_token: Session ID
            now: Evaluation time

        Returns:
            DemoSession, or None if it does not exist or has expired
        """
        if not session_token:
            return None
        now = to_utc_naive(now or utcnow())
        session = await self._fetch(session_token)
        if session is None or session.expires_at <= now:
            return None
        return session

    async def ensure_session(
        self,
        session_token: Optional[str] = None,
        now: Optional[datetime] = None,
        referred_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> DemoSession:
        """
        Return the live session for a token, or create a new one

        New sessions always get a server-issued token. An expired session
        with the given token is deleted with its counters and referrals
        before the fresh one is created.

        Args:
            session_token: Session ID presented by the client, if any
            now: Evaluation time
            referred_by: Referral code that brought this visitor
            ip_address: Client IP
            user_agent: Client user agent
            fingerprint: Client fingerprint

        Returns:
            DemoSession
        """
        now = to_utc_naive(now or utcnow())

        if session_token:
            existing = await self._fetch(session_token)
            if existing is not None and existing.expires_at > now:
                existing.last_activity = now
                await self.db.commit()
                return existing
            if existing is not None:
                logger.info(f"Demo session {session_token} expired, starting a fresh one")
                self.db.expunge(existing)
                await delete_session_rows(self.db, [session_token])
                await self.db.commit()

        token = _new_session_token()
        referrer = None
        if referred_by:
            referrer = await self._find_by_code(referred_by, now)

        session = DemoSession(
            session_id=token,
            credits_remaining=settings.DEMO_DEFAULT_CREDITS,
            credits_used=0,
            referral_credits_earned=0,
            referred_by=referred_by if referrer is not None else None,
            ip_address=ip_address,
            user_agent=user_agent,
            fingerprint=fingerprint,
            created_at=now,
            last_activity=now,
            expires_at=now + timedelta(days=settings.DEMO_SESSION_TTL_DAYS),
        )
        self.db.add(session)
        await self.db.flush()

        if referrer is not None:
            amount = settings.DEMO_REFERRAL_CREDITS
            await self._award(referred_by, amount, now)
            self.db.add(DemoReferral(
                referrer_session_id=referrer.session_id,
                referral_code=referred_by,
                clicked_ip=ip_address,
                clicked_fingerprint=fingerprint,
                credits_awarded=amount,
                clicked_at=now,
            ))

        await self.db.commit()
        logger.info(f"Created demo session {token}")
        return session

    async def consume_credit(
        self,
        session_token: str,
        amount: int = 1,
        now: Optional[datetime] = None,
    ) -> CreditResult:
        """
        Deduct credits from a session if enough remain

        The check and the deduction are one conditional UPDATE, so concurrent
        calls can never take the balance below zero.

        Args:
            session_token: Session ID
            amount: Credits to deduct
            now: Evaluation time

        Returns:
            CreditResult; ok is False with reason ``insufficient_credits``
            when the balance is too low

        Raises:
            DemoSessionNotFound: If the session does not exist or has expired
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = to_utc_naive(now or utcnow())

        result = await self.db.execute(
            update(DemoSession)
            .where(
                DemoSession.session_id == session_token,
                DemoSession.expires_at > now,
                DemoSession.credits_remaining >= amount,
            )
            .values(
                credits_remaining=DemoSession.credits_remaining - amount,
                credits_used=DemoSession.credits_used + amount,
                last_activity=now,
            )
            .returning(DemoSession.credits_remaining, DemoSession.credits_used)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        await self.db.commit()

        if row is not None:
            return CreditResult(ok=True, credits_remaining=row.credits_remaining, credits_used=row.credits_used)

        session = await self.get_session(session_token, now)
        if session is None:
            raise DemoSessionNotFound(session_token)

        logger.info(f"Demo session {session_token} has {session.credits_remaining} credits, {amount} requested")
        return CreditResult(
            ok=False,
            credits_remaining=session.credits_remaining,
            credits_used=session.credits_used,
            reason="insufficient_credits",
        )

    async def generate_referral_code(self, session_token: str, now: Optional[datetime] = None) -> str:
        """
        Referral code of a session, assigning one on first call

        Args:
            session_token: Session ID
            now: Evaluation time

        Returns:
            Referral code

        Raises:
            DemoSessionNotFound: If the session does not exist or has expired
            DuplicateReferralCode: If every generated code collided
        """
        session = await self.get_session(session_token, now)
        if session is None:
            raise DemoSessionNotFound(session_token)
        if session.referral_code:
            return session.referral_code

        max_attempts = settings.REFERRAL_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            code = _new_referral_code()
            try:
                result = await self.db.execute(
                    update(DemoSession)
                    .where(DemoSession.session_id == session_token, DemoSession.referral_code.is_(None))
                    .values(referral_code=code)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError:
                await self.db.rollback()
                logger.warning(f"Referral code collision on attempt {attempt}/{max_attempts}")
                continue

            await self.db.commit()
            if result.rowcount:
                logger.info(f"Assigned referral code {code} to demo session {session_token}")
                return code

            # Assigned concurrently by another request
            session = await self._fetch(session_token)
            if session is None:
                raise DemoSessionNotFound(session_token)
            return session.referral_code

        raise DuplicateReferralCode(max_attempts)

    async def _award(self, referral_code: str, amount: int, now: datetime) -> bool:
        result = await self.db.execute(
            update(DemoSession)
            .where(DemoSession.referral_code == referral_code, DemoSession.expires_at > now)
            .values(
                credits_remaining=DemoSession.credits_remaining + amount,
                referral_credits_earned=DemoSession.referral_credits_earned + amount,
                last_activity=now,
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def award_referral_credits(
        self,
        referral_code: str,
        amount: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Add referral credits to the session owning a code

        Args:
            referral_code: Referral code
            amount: Credits to add (defaults to DEMO_REFERRAL_CREDITS)
            now: Evaluation time

        Returns:
            False if no live session owns the code
        """
        amount = settings.DEMO_REFERRAL_CREDITS if amount is None else amount
        now = to_utc_naive(now or utcnow())

        awarded = await self._award(referral_code, amount, now)
        await self.db.commit()

        if awarded:
            logger.info(f"Awarded {amount} referral credits to code {referral_code}")
        return awarded

    async def track_referral_click(
        self,
        referral_code: str,
        ip_address: Optional[str] = None,
        fingerprint: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReferralClickResult:
        """
        Record a click on a referral link and reward the referrer

        Repeated clicks from the same IP or fingerprint within
        REFERRAL_DUPLICATE_WINDOW_HOURS are ignored.

        Args:
            referral_code: Code from the link
            ip_address: Clicking client's IP
            fingerprint: Clicking client's fingerprint
            now: Evaluation time

        Returns:
            ReferralClickResult
        """
        if not referral_code or not referral_code.startswith(REFERRAL_CODE_PREFIX):
            return ReferralClickResult(tracked=False, reason="invalid_code")

        now = to_utc_naive(now or utcnow())
        referrer = await self._find_by_code(referral_code, now)
        if referrer is None:
            return ReferralClickResult(tracked=False, reason="not_found")

        same_client = []
        if ip_address:
            same_client.append(DemoReferral.clicked_ip == ip_address)
        if fingerprint:
            same_client.append(DemoReferral.clicked_fingerprint == fingerprint)

        if same_client:
            since = now - timedelta(hours=settings.REFERRAL_DUPLICATE_WINDOW_HOURS)
            result = await self.db.execute(
                select(DemoReferral.id).where(
                    DemoReferral.referral_code == referral_code,
                    DemoReferral.clicked_at > since,
                    or_(*same_client),
                ).limit(1)
            )
            if result.first() is not None:
                return ReferralClickResult(tracked=False, reason="duplicate_click")

        amount = settings.DEMO_REFERRAL_CREDITS
        referral = DemoReferral(
            referrer_session_id=referrer.session_id,
            referral_code=referral_code,
            clicked_ip=ip_address,
            clicked_fingerprint=fingerprint,
            credits_awarded=amount,
            clicked_at=now,
        )
        self.db.add(referral)
        await self._award(referral_code, amount, now)
        await self.db.commit()

        logger.info(f"Demo referral tracked for code {referral_code} (session {referrer.session_id})")
        return ReferralClickResult(tracked=True, credits_awarded=amount, referral_id=referral.id)

    async def mark_referral_converted(
        self,
        referral_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Mark a referral as converted to a signup

        Args:
            referral_id: DemoReferral ID
            user_id: The new user's ID
            now: Conversion time

        Returns:
            True if this call converted it, False if missing or already converted
        """
        now = to_utc_naive(now or utcnow())
        result = await self.db.execute(
            update(DemoReferral)
            .where(DemoReferral.id == referral_id, DemoReferral.converted_to_signup.is_(False))
            .values(converted_to_signup=True, converted_user_id=str(user_id), converted_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def referral_stats(self, session_token: str, now: Optional[datetime] = None) -> ReferralStats:
        """Referral code, credits earned, clicks and conversions for a session"""
        session = await self.get_session(session_token, now)
        if session is None:
            raise DemoSessionNotFound(session_token)

        result = await self.db.execute(
            select(
                func.count(DemoReferral.id).label("clicks"),
                func.count(DemoReferral.id).filter(DemoReferral.converted_to_signup.is_(True)).label("conversions"),
            ).where(DemoReferral.referrer_session_id == session.session_id)
        )
        row = result.one()

        return ReferralStats(
            referral_code=session.referral_code,
            credits_earned=session.referral_credits_earned,
            clicks=row.clicks or 0,
            conversions=row.conversions or 0,
        )

    async def touch(self, session_token: str, now: Optional[datetime] = None):
        """Update last_activity of a session"""
        now = to_utc_naive(now or utcnow())
        await self.db.execute(
            update(DemoSession)
            .where(DemoSession.session_id == session_token)
            .values(last_activity=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def feature_limits(self) -> List[DemoFeatureLimit]:
        """Per-feature caps for demo sessions"""
        result = await self.db.execute(select(DemoFeatureLimit).order_by(DemoFeatureLimit.feature))
        return list(result.scalars().all())

    async def check_feature(self, feature: str) -> DemoFeatureAvailability:
        """
        Whether a feature can be used in demo mode

        Features without a demo_limits row are unavailable.
        """
        result = await self.db.execute(select(DemoFeatureLimit).where(DemoFeatureLimit.feature == feature))
        limit = result.scalar_one_or_none()
        if limit is None:
            return DemoFeatureAvailability(
                feature=feature,
                available=False,
                reason="Feature not available in demo mode",
            )
        return DemoFeatureAvailability(
            feature=feature,
            available=limit.max_count > 0,
            max_count=limit.max_count,
            description=limit.description,
        )

    @staticmethod
    def credit_summary(session: DemoSession) -> DemoCredits:
        return DemoCredits(
            credits_remaining=session.credits_remaining,
            credits_used=session.credits_used,
            referral_credits_earned=session.referral_credits_earned,
            has_credits=session.credits_remaining > 0,
        )

    @staticmethod
    def to_principal(session: DemoSession) -> DemoPrincipal:
        return DemoPrincipal(session_id=session.session_id, credits_remaining=session.credits_remaining)
