"""
User and BYOK credential models
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
import uuid

from app.core.windows import utcnow
from app.db.base import Base


class User(Base):
    """
    Authenticated platform user

    Only the fields that drive tier resolution are modeled here.
    """
    __tablename__ = "users"

    # Primary key - use String for SQLite compatibility
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)

    email = Column(String(255), unique=True, nullable=False, index=True)

    # Stored subscription tier; NULL falls back to community
    subscription_tier = Column(String(50), nullable=True, index=True)

    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    api_keys = relationship("UserAPIKey", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, tier={self.subscription_tier})>"


class UserAPIKey(Base):
    """
    Bring-your-own-key provider credential

    The key material itself is kept elsewhere; only its state matters for
    rate limiting.
    """
    __tablename__ = "user_api_keys"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(String(50), nullable=False)
    key_hint = Column(String(16), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_valid = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="api_keys")

    def __repr__(self):
        return f"<UserAPIKey(id={self.id}, user_id={self.user_id}, provider={self.provider})>"
