from datetime import timedelta
from typing import Optional
import logging

from sqlalchemy.orm import Session

from authgate.core.config import settings
from authgate.models.user import User
from authgate.services.session_service import SessionService
from authgate.services.token_service import TokenService
from authgate.utils import helpers
from authgate.utils.errors import Conflict, NotFound

logger = logging.getLogger(__name__)


class UserService:

    @staticmethod
    def get(db: Session, user_id: int) -> User:
        user = db.get(User, user_id)
        if not user:
            raise NotFound("User")
        return user

    @staticmethod
    def profile(db: Session, user: User) -> dict:
        return {
            **user.to_summary(),
            "has_password": user.has_password,
            "oauth_provider": user.oauth_provider,
            "passkeys": len(user.webauthn_credentials),
            "login_count": user.login_count,
            "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
            "password_changed_at": user.password_changed_at.isoformat() if user.password_changed_at else None,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }

    @staticmethod
    def change_username(db: Session, user: User, username: str) -> User:
        if username == user.username:
            return user
        taken = db.query(User.id).filter(User.username == username, User.id != user.id).first()
        if taken:
            raise Conflict("This username is already taken")
        user.username = username
        db.commit()
        return user

    @staticmethod
    def list_users(db: Session, page: int = 1, size: int = 20) -> dict:
        query = db.query(User).order_by(User.created_at.desc())
        total = query.count()
        users = query.offset((page - 1) * size).limit(size).all()
        return {
            "items": [
                {
                    **u.to_summary(),
                    "is_locked": u.is_locked,
                    "locked_until": u.locked_until.isoformat() if u.locked_until else None,
                    "login_count": u.login_count,
                    "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
                }
                for u in users
            ],
            "pagination": {"total": total, "page": page, "size": size},
        }

    @staticmethod
    def lock(db: Session, user_id: int, minutes: Optional[int] = None) -> User:
        """Lock an account. ``minutes=None`` uses the configured lock length; 0 locks indefinitely."""
        user = UserService.get(db, user_id)
        if minutes == 0:
            until = None
        else:
            until = helpers.utcnow() + timedelta(minutes=minutes or settings.ACCOUNT_LOCK_MINUTES)
        user.lock(until)
        db.commit()
        SessionService.invalidate_all_for_user(db, user.id)
        logger.warning(f"User {user.id} locked by administrator until {until}")
        return user

    @staticmethod
    def unlock(db: Session, user_id: int) -> User:
        user = UserService.get(db, user_id)
        user.unlock()
        db.commit()
        logger.info(f"User {user.id} unlocked by administrator")
        return user

    @staticmethod
    def force_logout(db: Session, user_id: int) -> dict:
        user = UserService.get(db, user_id)
        revoked = TokenService.revoke_all_refresh_tokens(db, user.id)
        sessions = SessionService.invalidate_all_for_user(db, user.id)
        logger.warning(f"User {user.id} force-logged-out by administrator")
        return {"sessions_invalidated": sessions, "refresh_tokens_revoked": revoked}
