"""
Rate limit catalog model
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
import enum

from app.core.windows import utcnow
from app.db.base import Base


class TierName(str, enum.Enum):
    """Service tiers known to the platform"""
    COMMUNITY = "community"
    SUBSCRIBER = "subscriber"
    PREMIUM = "premium"
    LIFETIME = "lifetime"
    BYOK = "byok"
    ADMIN = "admin"
    DEMO = "demo"

    def __str__(self):
        return self.value


class RateLimit(Base):
    """
    Limit thresholds for one tier

    Every cap column is nullable; NULL means unlimited.
    """
    __tablename__ = "rate_limits"

    tier = Column(String(50), primary_key=True)

    # Request limits
    requests_per_minute = Column(Integer, nullable=True)
    requests_per_hour = Column(Integer, nullable=True)
    requests_per_day = Column(Integer, nullable=True)

    # Token limits (AI endpoints)
    max_tokens_per_request = Column(Integer, nullable=True)
    tokens_per_day = Column(Integer, nullable=True)

    # Storage limits
    max_documents = Column(Integer, nullable=True)
    max_storage_mb = Column(Integer, nullable=True)

    # Concurrency and features
    max_concurrent_requests = Column(Integer, default=3, nullable=True)
    max_agents = Column(Integer, default=0, nullable=True)
    agent_memory_enabled = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<RateLimit(tier={self.tier}, rpm={self.requests_per_minute})>"
