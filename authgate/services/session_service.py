from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional
import logging

from fastapi import Response
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from authgate.core.config import settings
from authgate.core.constants import (
    AUTH_COOKIE_NAME, CSRF_COOKIE_NAME, CSRF_HEADER_NAME, MAX_IP_LENGTH, MAX_USER_AGENT_LENGTH,
    REFRESH_COOKIE_NAME, SESSION_COOKIE_NAME,
)
from authgate.core.security import generate_csrf_token, generate_session_token, hash_token, tokens_match
from authgate.models.session import Session
from authgate.models.user import User
from authgate.services.token_service import TokenPair, TokenService
from authgate.utils import helpers
from authgate.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


@dataclass
class CreatedSession:
    session: Session
    session_token: str
    csrf_token: str


class SessionService:
    """Server-side sessions and their CSRF pairing.

    The raw session token only ever lives in the client's cookie; the
    database keeps its sha256.
    """

    @staticmethod
    def parse_device_info(user_agent: Optional[str]) -> str:
        if not user_agent:
            return "Unknown Device"
        if "Mobile" in user_agent:
            return "Mobile Device"
        if "Tablet" in user_agent:
            return "Tablet"
        if "Windows" in user_agent:
            return "Windows PC"
        if "Mac" in user_agent:
            return "Mac"
        if "Linux" in user_agent:
            return "Linux PC"
        return "Unknown Device"

    @staticmethod
    def _lifetime(remember_me: bool) -> timedelta:
        if remember_me:
            return timedelta(days=settings.REMEMBER_ME_SESSION_DAYS)
        return timedelta(hours=settings.SESSION_EXPIRY_HOURS)

    @staticmethod
    def create(
        db: DBSession,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_info: Optional[str] = None,
        remember_me: bool = False,
    ) -> CreatedSession:
        session_token = generate_session_token()
        csrf_token = generate_csrf_token()

        session = Session(
            session_token_hash=hash_token(session_token),
            user_id=user_id,
            expires_at=helpers.utcnow() + SessionService._lifetime(remember_me),
            ip_address=helpers.clamp(ip_address, MAX_IP_LENGTH),
            user_agent=helpers.clamp(user_agent, MAX_USER_AGENT_LENGTH),
            device_info=device_info or SessionService.parse_device_info(user_agent),
            is_active=True,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return CreatedSession(session=session, session_token=session_token, csrf_token=csrf_token)

    @staticmethod
    def _find(db: DBSession, session_token: str) -> Optional[Session]:
        return (
            db.query(Session)
            .filter(Session.session_token_hash == hash_token(session_token))
            .first()
        )

    @staticmethod
    def is_live(session: Optional[Session]) -> bool:
        return bool(session and session.is_active and session.expires_at > helpers.utcnow())

    @staticmethod
    def validate(db: DBSession, session_token: Optional[str]) -> Optional[Session]:
        """Return the active, unexpired session for ``session_token`` or None."""
        if not session_token:
            return None
        try:
            session = SessionService._find(db, session_token)
            if not SessionService.is_live(session):
                return None
            session.updated_at = helpers.utcnow()
            db.commit()
            return session
        except SQLAlchemyError as e:
            logger.error(f"Session validation failed: {e}")
            db.rollback()
            return None

    @staticmethod
    def get_by_id(db: DBSession, session_id: str) -> Optional[Session]:
        return db.get(Session, session_id)

    @staticmethod
    def refresh(
        db: DBSession,
        session_token: str,
        extend_by: Optional[timedelta] = None,
    ) -> Optional[Session]:
        session = SessionService._find(db, session_token)
        if not session or not session.is_active:
            return None
        now = helpers.utcnow()
        session.expires_at = now + (extend_by or SessionService._lifetime(False))
        session.updated_at = now
        db.commit()
        return session

    @staticmethod
    def invalidate(db: DBSession, session_token: str) -> bool:
        session = SessionService._find(db, session_token)
        if not session:
            return False
        session.is_active = False
        db.commit()
        return True

    @staticmethod
    def invalidate_by_id(db: DBSession, session_id: str, user_id: Optional[int] = None) -> bool:
        query = db.query(Session).filter(Session.id == session_id)
        if user_id is not None:
            query = query.filter(Session.user_id == user_id)
        session = query.first()
        if not session:
            return False
        session.is_active = False
        db.commit()
        return True

    @staticmethod
    def invalidate_all_for_user(db: DBSession, user_id: int) -> int:
        result = db.execute(
            update(Session)
            .where(Session.user_id == user_id, Session.is_active.is_(True))
            .values(is_active=False, updated_at=helpers.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    @staticmethod
    def list_active(db: DBSession, user_id: int) -> List[Session]:
        return (
            db.query(Session)
            .filter(
                Session.user_id == user_id,
                Session.is_active.is_(True),
                Session.expires_at > helpers.utcnow(),
            )
            .order_by(Session.updated_at.desc())
            .all()
        )

    @staticmethod
    def get_stats(db: DBSession, user_id: int) -> dict:
        sessions = db.query(Session).filter(Session.user_id == user_id).all()
        now = helpers.utcnow()
        active = [s for s in sessions if s.is_active and s.expires_at > now]
        user = db.get(User, user_id)
        return {
            "active_sessions": len(active),
            "total_sessions": len(sessions),
            "last_login_at": user.last_login_at.isoformat() if user and user.last_login_at else None,
            "device_types": dict(Counter(s.device_info or "Unknown Device" for s in active)),
        }

    @staticmethod
    def cleanup_expired(db: DBSession) -> int:
        result = db.execute(delete(Session).where(Session.expires_at < helpers.utcnow()))
        db.commit()
        return result.rowcount

    # -- CSRF -----------------------------------------------------------

    @staticmethod
    def validate_csrf(ctx: RequestContext) -> bool:
        """Double-submit check: the readable cookie must be echoed in the header."""
        if ctx.is_safe_method:
            return True
        return tokens_match(ctx.cookie(CSRF_COOKIE_NAME), ctx.header(CSRF_HEADER_NAME))

    # -- Cookies --------------------------------------------------------

    @staticmethod
    def cookie_options(max_age: Optional[int] = None) -> dict:
        return {
            "httponly": True,
            "secure": settings.is_production,
            "samesite": "strict" if settings.is_production else "lax",
            "max_age": max_age if max_age is not None else settings.SESSION_EXPIRY_HOURS * 3600,
            "path": "/",
        }

    @staticmethod
    def set_session_cookies(response: Response, session_token: str, csrf_token: str, remember_me: bool = False):
        options = SessionService.cookie_options(int(SessionService._lifetime(remember_me).total_seconds()))
        response.set_cookie(SESSION_COOKIE_NAME, session_token, **options)
        # JS must read the CSRF cookie to echo it in the header
        response.set_cookie(CSRF_COOKIE_NAME, csrf_token, **{**options, "httponly": False})

    @staticmethod
    def set_token_cookies(response: Response, pair: TokenPair):
        now = helpers.utcnow()
        access_age = max(int((pair.access_expires_at - now).total_seconds()), 0)
        refresh_age = max(int((pair.refresh_expires_at - now).total_seconds()), 0)
        response.set_cookie(AUTH_COOKIE_NAME, pair.access_token, **SessionService.cookie_options(access_age))
        response.set_cookie(REFRESH_COOKIE_NAME, pair.refresh_token, **SessionService.cookie_options(refresh_age))

    @staticmethod
    def clear_session_cookies(response: Response):
        options = SessionService.cookie_options(0)
        options.pop("max_age")
        for name in (SESSION_COOKIE_NAME, AUTH_COOKIE_NAME, REFRESH_COOKIE_NAME):
            response.delete_cookie(name, **options)
        response.delete_cookie(CSRF_COOKIE_NAME, **{**options, "httponly": False})

    @staticmethod
    def create_session_with_tokens(
        db: DBSession,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        remember_me: bool = False,
        auth_method: str = "credentials",
    ) -> tuple[CreatedSession, TokenPair]:
        """Open a session and issue a token pair bound to it."""
        created = SessionService.create(
            db,
            user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            remember_me=remember_me,
        )
        claims = TokenService.build_claims(
            user,
            session_id=created.session.id,
            auth_method=auth_method,
            device_info=created.session.device_info,
            ip_address=ip_address,
        )
        pair = TokenService.issue_token_pair(db, claims, remember_me=remember_me)
        return created, pair
