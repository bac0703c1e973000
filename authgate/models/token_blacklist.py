"""Revoked token record, kept until the token's own expiry."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from authgate.core.database import Base
from authgate.models.base import IDMixin, _now


class TokenBlacklist(IDMixin, Base):
    __tablename__ = "token_blacklist"

    jti = Column(String(64), unique=True, index=True, nullable=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    reason = Column(String(100), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
