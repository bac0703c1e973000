from dataclasses import dataclass
from typing import Optional
import logging
import re

from google.auth.transport import requests
from google.oauth2 import id_token
from sqlalchemy.orm import Session

from authgate.core.config import settings
from authgate.core.constants import RESERVED_USERNAMES, AuthMethod, UserRole
from authgate.core.security import hash_password, verify_password
from authgate.middleware.auth import AuthMiddleware
from authgate.models.user import User
from authgate.services.session_service import CreatedSession, SessionService
from authgate.services.token_service import TokenPair, TokenService
from authgate.services.webauthn_service import webauthn_service
from authgate.utils import helpers
from authgate.utils.errors import (
    AccountLocked, Conflict, InvalidCredentialsError, Unauthorized, ValidationFailed,
)
from authgate.utils.request_context import RequestContext

logger = logging.getLogger(__name__)

GENERIC_LOGIN_FAILURE = "Invalid email or password"


@dataclass
class LoginResult:
    user: User
    session: CreatedSession
    tokens: TokenPair
    remember_me: bool = False
    created: bool = False

    def to_dict(self) -> dict:
        return {
            "user": self.user.to_summary(),
            "session": {
                "id": self.session.session.id,
                "expires_at": self.session.session.expires_at.isoformat(),
                "remember_me": self.remember_me,
            },
            "tokens": self.tokens.to_dict(),
            "csrf_token": self.session.csrf_token,
        }


def _login_key(ctx: RequestContext) -> str:
    return f"auth_login:{ctx.client_ip}"


class AuthService:

    @staticmethod
    def _ensure_unlocked(db: Session, user: User):
        if not user.is_locked:
            return
        if user.lock_expired:
            user.unlock()
            db.commit()
            logger.info(f"Lock on user {user.id} expired, unlocked at login")
            return
        until = user.locked_until.isoformat() if user.locked_until else "further notice"
        raise AccountLocked(f"Account is temporarily locked until {until}. Please try again later.")

    @staticmethod
    def _open_session(
        db: Session,
        user: User,
        ctx: RequestContext,
        remember_me: bool,
        auth_method: str,
    ) -> LoginResult:
        created, pair = SessionService.create_session_with_tokens(
            db,
            user,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
            remember_me=remember_me,
            auth_method=auth_method,
        )
        user.login_count = (user.login_count or 0) + 1
        user.last_login_at = helpers.utcnow()
        db.commit()
        return LoginResult(user=user, session=created, tokens=pair, remember_me=remember_me)

    @staticmethod
    def register(
        db: Session,
        ctx: RequestContext,
        email: str,
        username: str,
        password: str,
        remember_me: bool = False,
    ) -> LoginResult:
        """
        Create an account and sign it straight in
        - Reject duplicate email / username
        - Hash password
        - Open session + token pair
        """
        identifier = f"auth_register:{ctx.client_ip}"
        email = email.lower()

        if db.query(User.id).filter(User.email == email).first():
            AuthMiddleware.log_auth_attempt(db, ctx, False, identifier, email=email, reason="email_taken")
            raise Conflict("An account with this email already exists")
        if db.query(User.id).filter(User.username == username).first():
            AuthMiddleware.log_auth_attempt(db, ctx, False, identifier, username=username, reason="username_taken")
            raise Conflict("This username is already taken")

        user = User(
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=UserRole.USER.value,
            password_changed_at=helpers.utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        AuthMiddleware.log_auth_attempt(db, ctx, True, identifier, user_id=user.id, email=email, username=username)
        logger.info(f"Registered user {user.id} ({username})")

        result = AuthService._open_session(db, user, ctx, remember_me, AuthMethod.CREDENTIALS.value)
        result.created = True
        return result

    @staticmethod
    def login(
        db: Session,
        ctx: RequestContext,
        email: str,
        password: str,
        remember_me: bool = False,
    ) -> LoginResult:
        """
        Email/password login
        - Honour (and lift expired) account locks
        - Verify credentials, counting failures towards lockout
        - Create session & tokens
        """
        identifier = _login_key(ctx)
        email = email.lower()
        user = db.query(User).filter(User.email == email).first()

        if not user:
            AuthMiddleware.log_auth_attempt(db, ctx, False, identifier, email=email, reason="user_not_found")
            raise InvalidCredentialsError(GENERIC_LOGIN_FAILURE)

        AuthService._ensure_unlocked(db, user)

        if not user.password_hash or not verify_password(password, user.password_hash):
            reason = "invalid_password" if user.password_hash else "no_password"
            AuthMiddleware.log_auth_attempt(
                db, ctx, False, identifier, user_id=user.id, email=email, reason=reason,
            )
            if AuthMiddleware.check_and_lock_user(db, user):
                raise AccountLocked("Too many failed attempts. Account has been temporarily locked.")
            raise InvalidCredentialsError(GENERIC_LOGIN_FAILURE)

        AuthMiddleware.log_auth_attempt(db, ctx, True, identifier, user_id=user.id, email=email)
        return AuthService._open_session(db, user, ctx, remember_me, AuthMethod.CREDENTIALS.value)

    @staticmethod
    def passkey_login(
        db: Session,
        ctx: RequestContext,
        ceremony_id: str,
        credential: dict,
        remember_me: bool = False,
    ) -> LoginResult:
        identifier = _login_key(ctx)
        verified = webauthn_service.verify_authentication(db, ceremony_id, credential)
        if not verified.ok:
            AuthMiddleware.log_auth_attempt(db, ctx, False, identifier, reason=verified.error_code.lower())
            raise verified.to_exception()

        user = verified.value.user
        AuthService._ensure_unlocked(db, user)
        AuthMiddleware.log_auth_attempt(db, ctx, True, identifier, user_id=user.id, username=user.username)
        return AuthService._open_session(db, user, ctx, remember_me, AuthMethod.PASSKEY.value)

    @staticmethod
    def verify_google_token(id_token_str: str) -> dict:
        """
        Verify a Google ID token
        - Validate token signature and audience
        - Extract user info
        """
        if not settings.GOOGLE_CLIENT_ID:
            raise Unauthorized("Google sign-in is not configured")
        try:
            idinfo = id_token.verify_oauth2_token(
                id_token_str,
                requests.Request(),
                settings.GOOGLE_CLIENT_ID,
            )
        except ValueError as e:
            logger.error(f"Google token verification failed: {e}")
            raise Unauthorized("Invalid Google token")

        if not idinfo.get("email"):
            raise Unauthorized("Google account has no email address")
        return {
            "google_id": idinfo["sub"],
            "email": idinfo["email"].lower(),
            "name": idinfo.get("name", ""),
        }

    @staticmethod
    def _unique_username(db: Session, seed: str) -> str:
        base = re.sub(r"[^a-zA-Z0-9_-]", "", seed)[:24] or "user"
        if len(base) < 3 or base.lower() in RESERVED_USERNAMES:
            base = f"user_{base}"
        candidate, n = base, 1
        while db.query(User.id).filter(User.username == candidate).first():
            n += 1
            candidate = f"{base}{n}"
        return candidate

    @staticmethod
    def google_oauth_login(
        db: Session,
        ctx: RequestContext,
        id_token_str: str,
        remember_me: bool = False,
    ) -> LoginResult:
        """
        Google OAuth login/register
        - Verify token
        - Find, link or create user
        - Open session
        """
        google_data = AuthService.verify_google_token(id_token_str)
        user = db.query(User).filter(User.google_id == google_data["google_id"]).first()
        created = False

        if not user:
            user = db.query(User).filter(User.email == google_data["email"]).first()
            if user:
                user.google_id = google_data["google_id"]
                user.oauth_provider = "google"
            else:
                user = User(
                    email=google_data["email"],
                    username=AuthService._unique_username(db, google_data["email"].split("@")[0]),
                    google_id=google_data["google_id"],
                    oauth_provider="google",
                    role=UserRole.USER.value,
                )
                db.add(user)
                created = True
            db.commit()
            db.refresh(user)

        AuthService._ensure_unlocked(db, user)
        AuthMiddleware.log_auth_attempt(db, ctx, True, _login_key(ctx), user_id=user.id, email=user.email)
        result = AuthService._open_session(db, user, ctx, remember_me, AuthMethod.OAUTH.value)
        result.created = created
        return result

    @staticmethod
    def refresh(db: Session, ctx: RequestContext, refresh_token: Optional[str]) -> TokenPair:
        pair = TokenService.refresh(db, refresh_token or "", ip_address=ctx.client_ip)
        if not pair:
            raise Unauthorized("Invalid or expired refresh token. Please sign in again.", code="REFRESH_FAILED")
        return pair

    @staticmethod
    def logout(
        db: Session,
        auth,
        session_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        logout_all: bool = False,
    ) -> dict:
        user_id = auth.user_id
        if auth.source != "session":
            TokenService.blacklist(db, auth.token, reason="logout_all" if logout_all else "logout", user_id=user_id)

        if logout_all:
            revoked = TokenService.revoke_all_refresh_tokens(db, user_id)
            sessions = SessionService.invalidate_all_for_user(db, user_id)
            logger.info(f"User {user_id} signed out everywhere ({sessions} sessions, {revoked} refresh tokens)")
            return {"sessions_invalidated": sessions, "refresh_tokens_revoked": revoked}

        if refresh_token:
            TokenService.revoke_refresh_token(db, refresh_token)
            TokenService.blacklist(db, refresh_token, reason="logout", user_id=user_id)

        sessions = 0
        if session_token and SessionService.invalidate(db, session_token):
            sessions = 1
        elif auth.session is not None and SessionService.invalidate_by_id(db, auth.session.id, user_id):
            sessions = 1
        logger.info(f"User {user_id} signed out")
        return {"sessions_invalidated": sessions, "refresh_tokens_revoked": 1 if refresh_token else 0}

    @staticmethod
    def change_password(db: Session, auth, current_password: Optional[str], new_password: str) -> dict:
        """Every other session and refresh token dies with the old password."""
        user = auth.user
        if user.password_hash:
            if not current_password or not verify_password(current_password, user.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")
            if verify_password(new_password, user.password_hash):
                raise ValidationFailed("New password must be different from the current password")

        user.password_hash = hash_password(new_password)
        user.password_changed_at = helpers.utcnow()
        db.commit()

        revoked = TokenService.revoke_all_refresh_tokens(db, user.id)
        sessions = SessionService.invalidate_all_for_user(db, user.id)
        if auth.source != "session":
            TokenService.blacklist(db, auth.token, reason="password_change", user_id=user.id)
        logger.info(f"Password changed for user {user.id}")
        return {"sessions_invalidated": sessions, "refresh_tokens_revoked": revoked}

    @staticmethod
    def delete_account(db: Session, auth, password: Optional[str]) -> None:
        user = auth.user
        if user.password_hash and not verify_password(password or "", user.password_hash):
            raise InvalidCredentialsError("Password is incorrect")

        if auth.source != "session":
            TokenService.blacklist(db, auth.token, reason="account_deleted", user_id=user.id)
        TokenService.revoke_all_refresh_tokens(db, user.id)
        SessionService.invalidate_all_for_user(db, user.id)

        user_id = user.id
        db.delete(user)
        db.commit()
        logger.info(f"Account {user_id} deleted")

    @staticmethod
    def check_availability(db: Session, email: Optional[str] = None, username: Optional[str] = None) -> dict:
        result = {}
        if email:
            taken = db.query(User.id).filter(User.email == email.lower()).first() is not None
            result["email"] = {"value": email.lower(), "available": not taken}
        if username:
            reserved = username.lower() in RESERVED_USERNAMES
            taken = reserved or db.query(User.id).filter(User.username == username).first() is not None
            result["username"] = {"value": username, "available": not taken, "reserved": reserved}
        if not result:
            raise ValidationFailed("Provide an email or a username to check")
        return result
