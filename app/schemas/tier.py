"""
Tier-related schemas
"""
from pydantic import BaseModel
from typing import Optional

from app.core.windows import WindowType


class TierLimits(BaseModel):
    """Limit thresholds for a tier (None means unlimited)"""
    tier: str
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None
    max_tokens_per_request: Optional[int] = None
    tokens_per_day: Optional[int] = None
    max_documents: Optional[int] = None
    max_storage_mb: Optional[int] = None
    max_concurrent_requests: Optional[int] = 3
    max_agents: Optional[int] = 0
    agent_memory_enabled: bool = False

    class Config:
        from_attributes = True

    def request_cap(self, window_type: WindowType) -> Optional[int]:
        """Request cap for a window granularity"""
        return {
            WindowType.MINUTE: self.requests_per_minute,
            WindowType.HOUR: self.requests_per_hour,
            WindowType.DAY: self.requests_per_day,
        }[WindowType(window_type)]

    @property
    def is_unlimited(self) -> bool:
        """True when no request or token cap applies"""
        return all(
            cap is None
            for cap in (
                self.requests_per_minute,
                self.requests_per_hour,
                self.requests_per_day,
                self.max_tokens_per_request,
                self.tokens_per_day,
            )
        )


class TierLimitsUpdate(BaseModel):
    """Payload for administrative tier upserts"""
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None
    max_tokens_per_request: Optional[int] = None
    tokens_per_day: Optional[int] = None
    max_documents: Optional[int] = None
    max_storage_mb: Optional[int] = None
    max_concurrent_requests: Optional[int] = 3
    max_agents: Optional[int] = 0
    agent_memory_enabled: bool = False


class TierCheckResponse(BaseModel):
    """Response for a feature gate check"""
    allowed: bool
    reason: str | None = None
    current_usage: int | None = None
    limit: int | None = None
