"""User account model."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from authgate.core.constants import UserRole
from authgate.core.database import Base
from authgate.models.base import IDMixin, TimestampMixin
from authgate.utils import helpers


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(50), unique=True, index=True, nullable=False)
    # Passkey-only and OAuth accounts have no password
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), default=UserRole.USER.value, nullable=False, index=True)

    # OAuth
    google_id = Column(String(255), unique=True, index=True, nullable=True)
    oauth_provider = Column(String(50), nullable=True)

    # Lock state
    is_locked = Column(Boolean, default=False, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    # Counters
    login_count = Column(Integer, default=0, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    webauthn_credentials = relationship(
        "WebAuthnCredential",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def lock_expired(self) -> bool:
        return bool(self.is_locked and self.locked_until and self.locked_until <= helpers.utcnow())

    def lock(self, until):
        self.is_locked = True
        self.locked_until = until

    def unlock(self):
        self.is_locked = False
        self.locked_until = None

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "role": self.role,
        }

    def __repr__(self):
        return f"<User id={self.id} username={self.username!r}>"
