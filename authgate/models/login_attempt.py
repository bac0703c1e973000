"""Append-only authentication attempt log."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from authgate.core.database import Base
from authgate.models.base import IDMixin, _now


class LoginAttempt(IDMixin, Base):
    __tablename__ = "login_attempts"
    __table_args__ = (Index("ix_login_attempts_identifier_created", "identifier", "created_at"),)

    # Rate-limit key, e.g. "auth_login:203.0.113.7"
    identifier = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    username = Column(String(50), nullable=True)
    user_agent = Column(String(512), nullable=True)

    success = Column(Boolean, default=False, nullable=False)
    fail_reason = Column(String(100), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, default=_now, nullable=False, index=True)
