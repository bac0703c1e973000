"""WebAuthn (passkey) credential model."""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, LargeBinary, String
from sqlalchemy.orm import relationship

from authgate.core.database import Base
from authgate.models.base import TimestampMixin, UUIDMixin


class WebAuthnCredential(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "webauthn_credentials"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # base64url of the raw credential id
    credential_id = Column(String(512), unique=True, index=True, nullable=False)
    public_key = Column(LargeBinary, nullable=False)
    sign_count = Column(Integer, default=0, nullable=False)

    device_type = Column(String(32), nullable=True)
    backed_up = Column(Boolean, default=False, nullable=False)
    transports = Column(JSON, nullable=True)
    nickname = Column(String(100), nullable=True)
    last_used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="webauthn_credentials")

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "nickname": self.nickname,
            "device_type": self.device_type,
            "backed_up": self.backed_up,
            "transports": self.transports or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }
