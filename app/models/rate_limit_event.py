"""
Rate limit violation log model
"""
from sqlalchemy import Column, String, Integer, DateTime, Index
import uuid

from app.core.windows import utcnow
from app.db.base import Base


class RateLimitEvent(Base):
    """
    One rejected request

    Append-only. Purged by the retention sweep after 30 days.
    """
    __tablename__ = "rate_limit_events"
    __table_args__ = (
        Index("ix_rate_limit_events_principal", "principal_type", "principal_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # "user" or "demo"
    principal_type = Column(String(10), nullable=False)
    principal_id = Column(String(64), nullable=False)

    # Event details
    limit_type = Column(String(50), nullable=False)
    limit_value = Column(Integer, nullable=True)
    current_value = Column(Integer, nullable=True)
    tier = Column(String(50), nullable=True)

    # Request context
    endpoint = Column(String(200), nullable=True)
    ip_address = Column(String(45), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<RateLimitEvent(principal={self.principal_type}:{self.principal_id}, limit={self.limit_type})>"
