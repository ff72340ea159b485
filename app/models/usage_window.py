"""
Window counter models

One row per principal, window start and window type. Rows are only ever
changed through the atomic upsert in UsageCounter.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, Index
import uuid

from app.core.windows import utcnow
from app.db.base import Base


class UserRateTracking(Base):
    """Request and token counters for an authenticated user"""
    __tablename__ = "user_rate_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "window_start", "window_type", name="uq_user_rate_window"),
        Index("ix_user_rate_tracking_window", "window_start", "window_type"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    window_start = Column(DateTime, nullable=False, index=True)
    window_type = Column(String(20), nullable=False)

    request_count = Column(Integer, default=0, nullable=False)
    token_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<UserRateTracking(user_id={self.user_id}, window={self.window_type}@{self.window_start}, "
            f"requests={self.request_count})>"
        )


class DemoRateTracking(Base):
    """Request and token counters for an anonymous demo session"""
    __tablename__ = "demo_rate_tracking"
    __table_args__ = (
        UniqueConstraint("session_id", "window_start", "window_type", name="uq_demo_rate_window"),
        Index("ix_demo_rate_tracking_window", "window_start", "window_type"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(
        String(64), ForeignKey("demo_sessions.session_id", ondelete="CASCADE"), nullable=False, index=True
    )

    window_start = Column(DateTime, nullable=False, index=True)
    window_type = Column(String(20), nullable=False)

    request_count = Column(Integer, default=0, nullable=False)
    token_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<DemoRateTracking(session_id={self.session_id}, window={self.window_type}@{self.window_start}, "
            f"requests={self.request_count})>"
        )
