"""Persisted refresh token (hash only)."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from authgate.core.database import Base
from authgate.models.base import IDMixin, TimestampMixin


class RefreshToken(IDMixin, TimestampMixin, Base):
    __tablename__ = "refresh_tokens"

    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)

    # Rotation and logout revoke, they never delete
    is_revoked = Column(Boolean, default=False, nullable=False, index=True)
    revoked_at = Column(DateTime, nullable=True)

    device_info = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")
