"""Request admission: token or session in, authenticated context or precise rejection out.

``AuthMiddleware.authenticate`` runs the same linear sequence for every
protected route: extract credential, verify, check token type, load user,
honour locks, check roles, check CSRF, bind the session.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional, Sequence
import logging

from sqlalchemy.orm import Session as DBSession
from starlette.responses import Response

from authgate.core.config import settings
from authgate.core.constants import AUTH_COOKIE_NAME, SESSION_COOKIE_NAME, ErrorKind, TokenType
from authgate.models.login_attempt import LoginAttempt
from authgate.models.session import Session
from authgate.models.user import User
from authgate.services.rate_limiter import RateLimiter
from authgate.services.session_service import SessionService
from authgate.services.token_service import TokenService
from authgate.utils import helpers
from authgate.utils.request_context import RequestContext
from authgate.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

SOURCE_BEARER = "bearer"
SOURCE_SESSION = "session"
SOURCE_COOKIE = "cookie"


@dataclass(frozen=True)
class AuthOptions:
    require_auth: bool = True
    required_roles: Sequence[str] = ()
    require_csrf: bool = False
    allow_refresh_token: bool = False


@dataclass
class AuthContext:
    user: User
    claims: Dict[str, Any]
    token: str
    source: str
    session: Optional[Session] = None
    extra: dict = field(default_factory=dict)

    @property
    def user_id(self) -> int:
        return self.user.id

    def to_dict(self) -> dict:
        return {
            "user": self.user.to_summary(),
            "session": self.session.to_summary() if self.session else None,
            "auth_method": self.claims.get("auth_method"),
        }


class AuthMiddleware:
    @staticmethod
    def extract_token(ctx: RequestContext) -> tuple[Optional[str], Optional[str]]:
        """Bearer header, then session cookie, then the legacy auth cookie."""
        bearer = ctx.bearer_token
        if bearer:
            return bearer, SOURCE_BEARER
        session_token = ctx.cookie(SESSION_COOKIE_NAME)
        if session_token:
            return session_token, SOURCE_SESSION
        legacy = ctx.cookie(AUTH_COOKIE_NAME)
        if legacy:
            return legacy, SOURCE_COOKIE
        return None, None

    @staticmethod
    def _claims_from_session(db: DBSession, token: str) -> Result:
        session = SessionService.validate(db, token)
        if not session:
            return Err(ErrorKind.UNAUTHORIZED, "Invalid or expired session", "SESSION_INVALID")
        return Ok({
            "sub": str(session.user_id),
            "session_id": session.id,
            "token_type": "session",
            "auth_method": "session",
        })

    @staticmethod
    def authenticate(db: DBSession, ctx: RequestContext, options: AuthOptions = AuthOptions()) -> Result:
        """Returns ``Ok(AuthContext)``, ``Ok(None)`` for allowed anonymous access, or ``Err``."""
        token, source = AuthMiddleware.extract_token(ctx)
        if not token:
            if not options.require_auth:
                return Ok(None)
            return Err(ErrorKind.UNAUTHORIZED, "Authentication token required", "TOKEN_MISSING")

        if source == SOURCE_SESSION:
            verified = AuthMiddleware._claims_from_session(db, token)
        else:
            verified = TokenService.verify(db, token)
        if not verified.ok:
            return verified
        claims = verified.value

        if claims.get("token_type") == TokenType.REFRESH.value and not options.allow_refresh_token:
            return Err(ErrorKind.UNAUTHORIZED, "Refresh tokens are not accepted here", "TOKEN_TYPE_NOT_ALLOWED")

        subject = str(claims.get("sub", ""))
        user = db.get(User, int(subject)) if subject.isdigit() else None
        if not user:
            return Err(ErrorKind.UNAUTHORIZED, "User not found", "USER_NOT_FOUND")

        if user.is_locked:
            if user.lock_expired:
                user.unlock()
                db.commit()
                logger.info(f"Lock on user {user.id} expired, unlocked")
            else:
                until = user.locked_until.isoformat() if user.locked_until else "further notice"
                return Err(ErrorKind.LOCKED, f"Account is locked until {until}")

        if options.required_roles and user.role not in options.required_roles:
            return Err(ErrorKind.FORBIDDEN, "Insufficient permissions")

        if options.require_csrf and not SessionService.validate_csrf(ctx):
            return Err(ErrorKind.FORBIDDEN, "Invalid CSRF token", "CSRF_TOKEN_INVALID")

        session = None
        session_id = claims.get("session_id")
        if session_id:
            session = SessionService.get_by_id(db, session_id)
            if not SessionService.is_live(session) or session.user_id != user.id:
                if settings.STRICT_SESSION_BINDING:
                    return Err(ErrorKind.UNAUTHORIZED, "Session is no longer active", "SESSION_INVALID")
                session = None

        return Ok(AuthContext(user=user, claims=claims, token=token, source=source, session=session))

    @staticmethod
    def log_auth_attempt(
        db: DBSession,
        ctx: RequestContext,
        success: bool,
        identifier: Optional[str] = None,
        user_id: Optional[int] = None,
        email: Optional[str] = None,
        username: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        if success:
            logger.info(f"Auth success for user {user_id} from {ctx.client_ip}")
        else:
            logger.warning(f"Auth failure ({reason}) for {email or username or user_id} from {ctx.client_ip}")
        return RateLimiter.record_attempt(
            db,
            identifier or f"auth_login:{ctx.client_ip}",
            success,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
            email=email,
            username=username,
            user_id=user_id,
            fail_reason=reason,
        )

    @staticmethod
    def check_and_lock_user(
        db: DBSession,
        user: User,
        max_failures: Optional[int] = None,
        lock_minutes: Optional[int] = None,
    ) -> bool:
        """Lock ``user`` when failures in the rolling window reach the limit."""
        max_failures = max_failures or settings.ACCOUNT_LOCK_MAX_FAILURES
        lock_minutes = lock_minutes or settings.ACCOUNT_LOCK_MINUTES
        now = helpers.utcnow()
        recent_failures = (
            db.query(LoginAttempt)
            .filter(
                LoginAttempt.user_id == user.id,
                LoginAttempt.success.is_(False),
                LoginAttempt.created_at >= now - timedelta(minutes=settings.ACCOUNT_LOCK_WINDOW_MINUTES),
            )
            .count()
        )
        if recent_failures < max_failures:
            return False

        user.lock(now + timedelta(minutes=lock_minutes))
        db.commit()
        logger.warning(f"User {user.id} locked after {recent_failures} failed attempts")
        return True

    @staticmethod
    def add_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
        return response
