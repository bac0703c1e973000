from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from jose import JWTError
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from authgate.core.config import settings
from authgate.core.constants import AuthMethod, ErrorKind, TokenType
from authgate.core.security import (
    decode_jwt, encode_jwt, generate_jti, hash_token, parse_expiry,
)
from authgate.models.refresh_token import RefreshToken
from authgate.models.token_blacklist import TokenBlacklist
from authgate.models.user import User
from authgate.utils import helpers
from authgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)


def _epoch(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp())


def _from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


@dataclass
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime

    def to_dict(self) -> dict:
        now = helpers.utcnow()
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "bearer",
            "expires_in": max(int((self.access_expires_at - now).total_seconds()), 0),
            "expires_at": self.access_expires_at.isoformat(),
            "refresh_expires_at": self.refresh_expires_at.isoformat(),
        }


class TokenService:
    """Signed access/refresh tokens, rotation and revocation."""

    @staticmethod
    def build_claims(
        user: User,
        session_id: Optional[str] = None,
        auth_method: str = AuthMethod.CREDENTIALS.value,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "username": user.username,
            "role": user.role,
            "auth_method": auth_method,
        }
        if session_id:
            claims["session_id"] = session_id
        if device_info:
            claims["device_info"] = device_info
        if ip_address:
            claims["ip_address"] = ip_address
        return claims

    @staticmethod
    def _sign(claims: Dict[str, Any], token_type: TokenType, lifetime) -> IssuedToken:
        now = helpers.utcnow()
        expires_at = now + lifetime
        jti = generate_jti()
        payload = dict(claims)
        payload.update({
            "token_type": token_type.value,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
            "iat": _epoch(now),
            "exp": _epoch(expires_at),
            "jti": jti,
        })
        return IssuedToken(token=encode_jwt(payload), jti=jti, expires_at=_from_epoch(payload["exp"]))

    @staticmethod
    def issue_access_token(
        claims: Dict[str, Any],
        remember_me: bool = False,
        expires_in: Optional[str] = None,
    ) -> IssuedToken:
        """Sign an access token. 15 minutes by default, 30 days with ``remember_me``."""
        if expires_in:
            lifetime = parse_expiry(expires_in)
        elif remember_me:
            lifetime = parse_expiry(settings.REMEMBER_ME_EXPIRY)
        else:
            lifetime = parse_expiry(settings.ACCESS_TOKEN_EXPIRY)
        return TokenService._sign(claims, TokenType.ACCESS, lifetime)

    @staticmethod
    def issue_refresh_token(
        db: Session,
        user_id: int,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
        auth_method: Optional[str] = None,
    ) -> tuple[IssuedToken, RefreshToken]:
        """Sign a refresh token and persist its hash."""
        claims: Dict[str, Any] = {"sub": str(user_id)}
        if session_id:
            claims["session_id"] = session_id
        if auth_method:
            claims["auth_method"] = auth_method
        issued = TokenService._sign(claims, TokenType.REFRESH, parse_expiry(settings.REFRESH_TOKEN_EXPIRY))

        record = RefreshToken(
            token_hash=hash_token(issued.token),
            user_id=user_id,
            expires_at=issued.expires_at,
            device_info=device_info,
            ip_address=ip_address,
        )
        db.add(record)
        db.commit()
        return issued, record

    @staticmethod
    def issue_token_pair(
        db: Session,
        claims: Dict[str, Any],
        remember_me: bool = False,
        expires_in: Optional[str] = None,
    ) -> TokenPair:
        access = TokenService.issue_access_token(claims, remember_me=remember_me, expires_in=expires_in)
        refresh, _ = TokenService.issue_refresh_token(
            db,
            int(claims["sub"]),
            device_info=claims.get("device_info"),
            ip_address=claims.get("ip_address"),
            session_id=claims.get("session_id"),
            auth_method=claims.get("auth_method"),
        )
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_expires_at=access.expires_at,
            refresh_expires_at=refresh.expires_at,
        )

    @staticmethod
    def verify(db: Session, token: Optional[str]) -> Result:
        """Blacklist lookup, then signature/issuer/audience, then expiry.

        Returns ``Ok(claims)`` or an ``Err`` whose code names the reason.
        """
        if not token:
            return Err(ErrorKind.UNAUTHORIZED, "Token required", "TOKEN_MISSING")

        try:
            blacklisted = (
                db.query(TokenBlacklist.id)
                .filter(TokenBlacklist.token_hash == hash_token(token))
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Blacklist lookup failed: {e}")
            db.rollback()
            return Err(ErrorKind.INTERNAL_ERROR, "Unable to verify token")

        if blacklisted:
            return Err(ErrorKind.UNAUTHORIZED, "Token has been revoked", "TOKEN_BLACKLISTED")

        try:
            claims = decode_jwt(token)
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return Err(ErrorKind.UNAUTHORIZED, "Invalid token", "TOKEN_INVALID")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= _epoch(helpers.utcnow()):
            return Err(ErrorKind.UNAUTHORIZED, "Token has expired", "TOKEN_EXPIRED")

        return Ok(claims)

    @staticmethod
    def _claim_refresh_token(db: Session, record_id: int) -> bool:
        """Revoke iff not already revoked. Exactly one concurrent caller wins."""
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=helpers.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def refresh(
        db: Session,
        refresh_token: str,
        ip_address: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> Optional[TokenPair]:
        """Rotate a refresh token into a new pair. ``None`` means re-authenticate."""
        verified = TokenService.verify(db, refresh_token)
        if not verified.ok:
            return None
        claims = verified.value
        if claims.get("token_type") != TokenType.REFRESH.value:
            return None

        record = (
            db.query(RefreshToken)
            .filter(RefreshToken.token_hash == hash_token(refresh_token))
            .first()
        )
        if not record or str(record.user_id) != claims.get("sub"):
            return None
        if record.is_revoked or record.expires_at <= helpers.utcnow():
            return None

        if not TokenService._claim_refresh_token(db, record.id):
            logger.warning(f"Refresh token for user {record.user_id} was already used")
            return None

        user = db.get(User, record.user_id)
        if not user:
            return None

        new_claims = TokenService.build_claims(
            user,
            session_id=claims.get("session_id"),
            auth_method=claims.get("auth_method") or AuthMethod.CREDENTIALS.value,
            device_info=device_info or record.device_info,
            ip_address=ip_address or record.ip_address,
        )
        return TokenService.issue_token_pair(db, new_claims)

    @staticmethod
    def blacklist(db: Session, token: str, reason: str = "logout", user_id: Optional[int] = None) -> bool:
        """Reject ``token`` from now on, even while its signature and expiry still hold.

        Returns False when the token cannot be decoded at all.
        """
        if not token:
            return False
        token_digest = hash_token(token)
        if db.query(TokenBlacklist.id).filter(TokenBlacklist.token_hash == token_digest).first():
            return True

        try:
            claims = decode_jwt(token)
        except JWTError:
            return False

        exp = claims.get("exp")
        expires_at = _from_epoch(exp) if isinstance(exp, (int, float)) else helpers.utcnow() + parse_expiry(
            settings.ACCESS_TOKEN_EXPIRY
        )
        if user_id is None and str(claims.get("sub", "")).isdigit():
            user_id = int(claims["sub"])

        db.add(TokenBlacklist(
            jti=claims.get("jti"),
            token_hash=token_digest,
            user_id=user_id,
            reason=reason,
            expires_at=expires_at,
        ))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
        logger.info(f"Token blacklisted for user {user_id} ({reason})")
        return True

    @staticmethod
    def revoke_refresh_token(db: Session, refresh_token: str) -> bool:
        result = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_token(refresh_token),
                RefreshToken.is_revoked.is_(False),
            )
            .values(is_revoked=True, revoked_at=helpers.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def revoke_all_refresh_tokens(db: Session, user_id: int) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=helpers.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Revoked {result.rowcount} refresh tokens for user {user_id}")
        return result.rowcount

    @staticmethod
    def cleanup_expired(db: Session) -> dict:
        now = helpers.utcnow()
        blacklist = db.execute(delete(TokenBlacklist).where(TokenBlacklist.expires_at < now))
        refresh = db.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
        db.commit()
        return {
            "blacklisted_tokens": blacklist.rowcount,
            "refresh_tokens": refresh.rowcount,
        }
