"""
Demo session endpoints

Session initialization, credit tracking and demo referrals.
"""
from fastapi import APIRouter, Depends, HTTPException, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.db.session import get_db
from app.core.exceptions import DuplicateReferralCode
from app.models.demo_session import DemoSession
from app.schemas.demo import (
    CreditResult,
    DemoCredits,
    DemoFeatureAvailability,
    DemoFeatureLimitOut,
    DemoInitRequest,
    DemoSessionOut,
    ReferralClickResult,
    ReferralCodeOut,
    ReferralStats,
    ReferralTrackRequest,
    UseCreditRequest,
)
from app.services.demo_session_service import DemoSessionLedger
from app.api.dependencies import get_demo_session

router = APIRouter()


@router.post("/init", response_model=DemoSessionOut)
async def init_demo_session(
    request: Request,
    body: Optional[DemoInitRequest] = None,
    x_demo_session: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Return the caller's demo session, creating a new one if needed

    Unknown or expired tokens are replaced by a new server-issued session.
    """
    body = body or DemoInitRequest()
    return await DemoSessionLedger(db).ensure_session(
        session_token=x_demo_session,
        referred_by=body.referred_by,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        fingerprint=body.fingerprint,
    )


@router.get("/status", response_model=DemoSessionOut)
async def get_demo_status(session: DemoSession = Depends(get_demo_session)):
    """
    Current credits and referral info of the caller's session
    """
    return session


@router.post("/use-credit", response_model=CreditResult)
async def use_demo_credit(
    body: UseCreditRequest,
    session: DemoSession = Depends(get_demo_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Deduct credits for a demo action

    Returns 402 when the session does not have enough credits left.
    """
    result = await DemoSessionLedger(db).consume_credit(session.session_id, body.credits)
    if not result.ok:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={
                "detail": "Not enough demo credits. Sign up or earn more through referrals!",
                "action": body.action,
                **result.model_dump(),
            },
        )
    return result


@router.post("/referral/generate", response_model=ReferralCodeOut)
async def generate_referral_code(
    session: DemoSession = Depends(get_demo_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Referral code for the caller's session
    """
    try:
        code = await DemoSessionLedger(db).generate_referral_code(session.session_id)
    except DuplicateReferralCode:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a referral code, please retry"
        )
    return ReferralCodeOut(referral_code=code)


@router.post("/referral/track", response_model=ReferralClickResult)
async def track_referral(
    request: Request,
    body: ReferralTrackRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Record a click on a demo referral link
    """
    result = await DemoSessionLedger(db).track_referral_click(
        body.referral_code,
        ip_address=request.client.host if request.client else None,
        fingerprint=body.fingerprint,
    )
    if result.reason == "invalid_code":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid demo referral code")
    if result.reason == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Referral code not found or expired")
    return result


@router.get("/referral/stats", response_model=ReferralStats)
async def get_referral_stats(
    session: DemoSession = Depends(get_demo_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Clicks, conversions and credits earned through the caller's referral code
    """
    return await DemoSessionLedger(db).referral_stats(session.session_id)


@router.get("/limits", response_model=List[DemoFeatureLimitOut])
async def get_demo_limits(db: AsyncSession = Depends(get_db)):
    """
    Per-feature caps applied to demo sessions
    """
    return await DemoSessionLedger(db).feature_limits()


@router.get("/feature/{feature}", response_model=DemoFeatureAvailability)
async def check_demo_feature(feature: str, db: AsyncSession = Depends(get_db)):
    """
    Whether a feature is available in demo mode, with its cap
    """
    return await DemoSessionLedger(db).check_feature(feature)


@router.get("/credits", response_model=DemoCredits)
async def get_demo_credits(session: DemoSession = Depends(get_demo_session)):
    """
    Credit balance of the caller's session
    """
    return DemoSessionLedger.credit_summary(session)
