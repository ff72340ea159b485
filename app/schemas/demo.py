"""
Demo session schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class DemoInitRequest(BaseModel):
    """Body for session initialization"""
    fingerprint: Optional[str] = Field(None, max_length=64)
    referred_by: Optional[str] = Field(None, max_length=20, description="Referral code that brought this user")


class DemoSessionOut(BaseModel):
    """Demo session state"""
    session_id: str
    credits_remaining: int
    credits_used: int
    referral_code: Optional[str] = None
    referral_credits_earned: int
    expires_at: datetime

    class Config:
        from_attributes = True


class UseCreditRequest(BaseModel):
    """Body for credit consumption"""
    action: str
    credits: int = Field(1, ge=1)


class CreditResult(BaseModel):
    """Outcome of a credit deduction"""
    ok: bool
    credits_remaining: int
    credits_used: int
    reason: Optional[str] = None


class ReferralTrackRequest(BaseModel):
    """Body for referral click tracking"""
    referral_code: str = Field(..., max_length=20)
    fingerprint: Optional[str] = Field(None, max_length=64)


class ReferralClickResult(BaseModel):
    """Outcome of a referral click"""
    tracked: bool
    reason: Optional[str] = None
    credits_awarded: int = 0
    referral_id: Optional[str] = None


class ReferralStats(BaseModel):
    """Referral performance for a demo session"""
    referral_code: Optional[str] = None
    credits_earned: int = 0
    clicks: int = 0
    conversions: int = 0


class ReferralCodeOut(BaseModel):
    """Referral code of a demo session"""
    referral_code: str


class DemoFeatureLimitOut(BaseModel):
    """Cap on one demo feature"""
    feature: str
    max_count: int
    description: Optional[str] = None

    class Config:
        from_attributes = True


class DemoFeatureAvailability(BaseModel):
    """Whether a feature can be used in demo mode"""
    feature: str
    available: bool
    max_count: Optional[int] = None
    description: Optional[str] = None
    reason: Optional[str] = None


class DemoCredits(BaseModel):
    """Credit balance of a demo session"""
    credits_remaining: int
    credits_used: int
    referral_credits_earned: int
    has_credits: bool
