"""
Principal, request context and decision schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Literal, Optional, Union
import enum

from app.core.windows import WindowType


class LimitType(str, enum.Enum):
    """Which limit rejected a request"""
    REQUESTS_PER_MINUTE = "requests_per_minute"
    REQUESTS_PER_HOUR = "requests_per_hour"
    REQUESTS_PER_DAY = "requests_per_day"
    MAX_TOKENS_PER_REQUEST = "max_tokens_per_request"
    TOKENS_PER_DAY = "tokens_per_day"
    CREDITS_EXHAUSTED = "credits_exhausted"

    def __str__(self):
        return self.value

    @classmethod
    def for_window(cls, window_type: WindowType) -> "LimitType":
        return {
            WindowType.MINUTE: cls.REQUESTS_PER_MINUTE,
            WindowType.HOUR: cls.REQUESTS_PER_HOUR,
            WindowType.DAY: cls.REQUESTS_PER_DAY,
        }[WindowType(window_type)]


class ByokCredential(BaseModel):
    """State of one bring-your-own-key credential"""
    is_active: bool = True
    is_valid: bool = True
    expires_at: Optional[datetime] = None

    def usable_at(self, now: datetime) -> bool:
        if not (self.is_active and self.is_valid):
            return False
        return self.expires_at is None or self.expires_at > now


class UserPrincipal(BaseModel):
    """An authenticated user, with everything tier resolution needs"""
    kind: Literal["user"] = "user"
    user_id: str
    subscription_tier: Optional[str] = None
    is_admin: bool = False
    byok_credentials: list[ByokCredential] = Field(default_factory=list)

    @property
    def principal_id(self) -> str:
        return self.user_id


class DemoPrincipal(BaseModel):
    """An anonymous demo session"""
    kind: Literal["demo"] = "demo"
    session_id: str
    credits_remaining: int = 0

    @property
    def principal_id(self) -> str:
        return self.session_id


Principal = Union[UserPrincipal, DemoPrincipal]


class RequestContext(BaseModel):
    """Request details supplied by the gateway"""
    endpoint: Optional[str] = None
    ip_address: Optional[str] = None
    tokens_requested: int = Field(0, ge=0)


class RateLimitDecision(BaseModel):
    """
    Outcome of a rate limit check

    Allowed decisions carry only the tier. Denied decisions name the limit
    that was hit, its configured and current values and when it resets.
    """
    allowed: bool
    tier: str
    limit_type: Optional[LimitType] = None
    limit_value: Optional[int] = None
    current_value: Optional[int] = None
    resets_at: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def allow(cls, tier: str) -> "RateLimitDecision":
        return cls(allowed=True, tier=tier)

    @classmethod
    def deny(
        cls,
        tier: str,
        limit_type: LimitType,
        limit_value: Optional[int],
        current_value: Optional[int],
        resets_at: Optional[datetime] = None,
        retry_after_seconds: Optional[int] = None,
    ) -> "RateLimitDecision":
        return cls(
            allowed=False,
            tier=tier,
            limit_type=limit_type,
            limit_value=limit_value,
            current_value=current_value,
            resets_at=resets_at,
            retry_after_seconds=retry_after_seconds,
        )


class WindowUsage(BaseModel):
    """Counter values for one window"""
    window_type: WindowType
    window_start: datetime
    request_count: int = 0
    token_count: int = 0


class WindowStatus(BaseModel):
    """Consumption against one request cap"""
    window_type: WindowType
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    resets_at: datetime


class UsageStatus(BaseModel):
    """Current consumption for a principal"""
    tier: str
    windows: list[WindowStatus] = Field(default_factory=list)
    tokens_today: int = 0
    tokens_per_day: Optional[int] = None
    tokens_remaining_today: Optional[int] = None


class UsageReport(BaseModel):
    """Actual token usage reported after a downstream call"""
    estimated_tokens: int = Field(0, ge=0)
    actual_tokens: int = Field(..., ge=0)


class ViolationEventOut(BaseModel):
    """Violation event as returned by the API"""
    limit_type: str
    limit_value: Optional[int] = None
    current_value: Optional[int] = None
    tier: Optional[str] = None
    endpoint: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
