"""Per-IP, per-tier rate limiting for sensitive endpoints."""
from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from authgate.core.config import settings
from authgate.core.constants import MAX_USER_AGENT_LENGTH, UserRole
from authgate.core.database import get_db
from authgate.services.rate_limiter import RATE_LIMIT_CONFIGS, RateLimitResult, rate_limiter
from authgate.utils.errors import RateLimitExceeded
from authgate.utils.helpers import clamp, get_client_ip


def rate_key(tier: str, ip_address: str) -> str:
    return f"{tier}:{ip_address}"


def _role_for(request: Request):
    auth = getattr(request.state, "auth", None)
    if auth is None:
        return None
    return UserRole.ADMIN.value if auth.user.role == UserRole.ADMIN.value else "authenticated"


def rate_limit(tier: str, message: str = "Too many requests. Please slow down."):
    config = RATE_LIMIT_CONFIGS[tier]

    async def dependency(request: Request, response: Response, db: Session = Depends(get_db)):
        if not settings.RATE_LIMIT_ENABLED:
            return None

        ip_address = get_client_ip(request)
        identifier = rate_key(config.name, ip_address)
        result: RateLimitResult = rate_limiter.check_rate_limit(
            db,
            identifier,
            config,
            ip_address=ip_address,
            user_role=_role_for(request),
        )
        if not result.allowed:
            raise RateLimitExceeded(
                message,
                retry_after=result.retry_after,
                headers=result.headers(),
                details={
                    "retry_after": result.retry_after,
                    "reset_time": result.reset_time.isoformat(),
                    "is_blocked": result.is_blocked,
                    "block_expires_at": result.block_expires_at.isoformat() if result.block_expires_at else None,
                },
            )

        for name, value in result.headers().items():
            response.headers[name] = value
        if not config.skip_successful:
            rate_limiter.record_attempt(
                db,
                identifier,
                True,
                ip_address=ip_address,
                user_agent=clamp(request.headers.get("user-agent"), MAX_USER_AGENT_LENGTH),
            )
        return result

    return dependency
