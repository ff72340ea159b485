"""
Database models
"""
from app.models.rate_limit import RateLimit, TierName
from app.models.user import User, UserAPIKey
from app.models.usage_window import UserRateTracking, DemoRateTracking
from app.models.rate_limit_event import RateLimitEvent
from app.models.demo_session import DemoSession, DemoReferral, DemoFeatureLimit

__all__ = [
    "RateLimit",
    "TierName",
    "User",
    "UserAPIKey",
    "UserRateTracking",
    "DemoRateTracking",
    "RateLimitEvent",
    "DemoSession",
    "DemoReferral",
    "DemoFeatureLimit",
]
