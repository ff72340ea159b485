"""
Demo session, referral and feature limit models
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, CheckConstraint
import uuid

from app.core.windows import utcnow
from app.db.base import Base


class DemoSession(Base):
    """
    Anonymous trial principal keyed by an opaque session token
    """
    __tablename__ = "demo_sessions"
    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_demo_sessions_credits_non_negative"),
    )

    session_id = Column(String(64), primary_key=True)

    # Credits
    credits_remaining = Column(Integer, default=5, nullable=False)
    credits_used = Column(Integer, default=0, nullable=False)

    # Referrals
    referral_code = Column(String(20), unique=True, nullable=True, index=True)
    referral_credits_earned = Column(Integer, default=0, nullable=False)
    referred_by = Column(String(20), nullable=True, index=True)

    # Abuse prevention metadata
    ip_address = Column(String(45), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)
    fingerprint = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_activity = Column(DateTime, default=utcnow, nullable=False)
    last_request_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<DemoSession(session_id={self.session_id}, credits={self.credits_remaining})>"


class DemoReferral(Base):
    """
    A referral link click, optionally converted to a signup

    Append-only except for the conversion fields, which are set once.
    """
    __tablename__ = "demo_referrals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    referrer_session_id = Column(
        String(64), ForeignKey("demo_sessions.session_id", ondelete="CASCADE"), nullable=False, index=True
    )
    referral_code = Column(String(20), nullable=False, index=True)

    # Click info
    clicked_ip = Column(String(45), nullable=True)
    clicked_fingerprint = Column(String(64), nullable=True)

    # Conversion tracking
    converted_to_signup = Column(Boolean, default=False, nullable=False)
    converted_user_id = Column(String(36), nullable=True)

    credits_awarded = Column(Integer, default=0, nullable=False)

    clicked_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    converted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<DemoReferral(id={self.id}, code={self.referral_code}, converted={self.converted_to_signup})>"


class DemoFeatureLimit(Base):
    """Per-feature caps applied to demo sessions"""
    __tablename__ = "demo_limits"

    feature = Column(String(50), primary_key=True)
    max_count = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<DemoFeatureLimit(feature={self.feature}, max={self.max_count})>"
