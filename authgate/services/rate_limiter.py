from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import math

from sqlalchemy import delete
from sqlalchemy.orm import Session

from authgate.cache.cache_service import kv_store
from authgate.core.config import settings
from authgate.core.constants import MAX_IP_LENGTH, MAX_USER_AGENT_LENGTH
from authgate.models.login_attempt import LoginAttempt
from authgate.services.reputation import IPReputationTracker, build_tracker
from authgate.utils import helpers

logger = logging.getLogger(__name__)

ROLE_MULTIPLIERS = {
    "admin": 3.0,
    "super_admin": 3.0,
    "premium": 2.0,
    "authenticated": 1.5,
}


@dataclass(frozen=True)
class RateLimitConfig:
    name: str
    window: timedelta
    max_attempts: int
    block_duration: Optional[timedelta] = None
    skip_successful: bool = False
    # Fixed-threshold tiers ignore role and reputation scaling
    adaptive: bool = True


def _tier(name, window, max_attempts, block=None, skip_successful=False, adaptive=True):
    return RateLimitConfig(
        name=name,
        window=window,
        max_attempts=max_attempts,
        block_duration=block,
        skip_successful=skip_successful,
        adaptive=adaptive,
    )


_M = timedelta(minutes=1)
_H = timedelta(hours=1)

RATE_LIMIT_CONFIGS = {
    # Credential endpoints
    "auth_login": _tier("auth_login", 15 * _M, 5, 30 * _M, skip_successful=True, adaptive=False),
    "auth_register": _tier("auth_register", _H, 3, _H, skip_successful=True, adaptive=False),
    "auth_forgot_password": _tier("auth_forgot_password", _H, 3, 2 * _H, skip_successful=True, adaptive=False),
    "auth_change_password": _tier("auth_change_password", _H, 5, _H, skip_successful=True, adaptive=False),
    # Standard auth endpoints
    "auth_logout": _tier("auth_logout", 15 * _M, 10),
    "auth_refresh": _tier("auth_refresh", 15 * _M, 20),
    "auth_profile": _tier("auth_profile", 15 * _M, 30),
    "auth_availability": _tier("auth_availability", _M, 20, 5 * _M),
    # API
    "api_admin": _tier("api_admin", 15 * _M, 20, _H),
    "api_user_management": _tier("api_user_management", 15 * _M, 30),
    "api_profile_update": _tier("api_profile_update", 15 * _M, 10),
    "api_general": _tier("api_general", 15 * _M, 100),
    "api_upload": _tier("api_upload", _H, 10),
    "api_read_only": _tier("api_read_only", 15 * _M, 200),
    "api_health_check": _tier("api_health_check", _M, 60),
    # Per-user tiers
    "authenticated_user": _tier("authenticated_user", 15 * _M, 300),
    "premium_user": _tier("premium_user", 15 * _M, 500),
    "admin_user": _tier("admin_user", 15 * _M, 1000),
}


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    total_hits: int
    limit: int
    is_blocked: bool = False
    block_expires_at: Optional[datetime] = None
    extra: dict = field(default_factory=dict)

    @property
    def retry_after(self) -> int:
        return helpers.seconds_until(self.block_expires_at or self.reset_time)

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time.replace(tzinfo=timezone.utc).timestamp())),
        }


class RateLimiter:
    """Sliding-window limits over the login attempt log, with block escalation."""

    def __init__(self, reputation: IPReputationTracker):
        self.reputation = reputation

    def adaptive_max_attempts(
        self,
        config: RateLimitConfig,
        user_role: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """Role multiplier first, then reputation, floored and never below 1."""
        if not config.adaptive:
            return config.max_attempts
        multiplier = ROLE_MULTIPLIERS.get(user_role or "", 1.0)
        multiplier *= self.reputation.multiplier(ip_address)
        # round() first so 10 * 3.0 * 1.2 floors to 36, not 35
        return max(1, math.floor(round(config.max_attempts * multiplier, 6)))

    def _whitelisted_result(self, config: RateLimitConfig, now: datetime) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=config.max_attempts,
            reset_time=now + config.window,
            total_hits=0,
            limit=config.max_attempts,
        )

    def check_rate_limit(
        self,
        db: Session,
        identifier: str,
        config: RateLimitConfig,
        ip_address: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> RateLimitResult:
        now = helpers.utcnow()
        try:
            if ip_address and self.reputation.is_whitelisted(ip_address):
                return self._whitelisted_result(config, now)
            if ip_address and self.reputation.is_blacklisted(ip_address):
                logger.warning(f"Blacklisted IP {ip_address} refused on {config.name}")
                blocked_until = now + (config.block_duration or config.window)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=blocked_until,
                    total_hits=0,
                    limit=0,
                    is_blocked=True,
                    block_expires_at=blocked_until,
                    extra={"reason": "ip_blacklisted"},
                )

            max_attempts = self.adaptive_max_attempts(config, user_role, ip_address)
            result = self._evaluate(db, identifier, config, max_attempts, now)

            if ip_address:
                if result.allowed:
                    self.reputation.record_clean(ip_address)
                else:
                    self.reputation.record_violation(ip_address)
            return result
        except Exception as e:
            # Fail open: an outage here must not lock legitimate users out
            logger.error(f"Rate limit check failed for {identifier}: {e}", exc_info=True)
            db.rollback()
            return RateLimitResult(
                allowed=True,
                remaining=config.max_attempts,
                reset_time=now + config.window,
                total_hits=0,
                limit=config.max_attempts,
            )

    @staticmethod
    def _evaluate(
        db: Session,
        identifier: str,
        config: RateLimitConfig,
        max_attempts: int,
        now: datetime,
    ) -> RateLimitResult:
        block = config.block_duration or timedelta(0)
        # One snapshot covers both the live window and any block still in force
        rows = (
            db.query(LoginAttempt.created_at, LoginAttempt.success)
            .filter(
                LoginAttempt.identifier == identifier,
                LoginAttempt.created_at >= now - config.window - block,
                LoginAttempt.created_at <= now,
            )
            .all()
        )
        window_start = now - config.window
        counted = [
            created for created, success in rows
            if created >= window_start and not (config.skip_successful and success)
        ]
        total_hits = len(counted)
        reset_time = (min(counted) + config.window) if counted else now + config.window

        if config.block_duration:
            failures = sorted(created for created, success in rows if not success)
            if failures:
                latest = failures[-1]
                block_expires_at = latest + config.block_duration
                triggering = [f for f in failures if latest - config.window <= f <= latest]
                if now < block_expires_at and len(triggering) >= max_attempts:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_time=block_expires_at,
                        total_hits=total_hits,
                        limit=max_attempts,
                        is_blocked=True,
                        block_expires_at=block_expires_at,
                    )

        allowed = total_hits < max_attempts
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, max_attempts - total_hits),
            reset_time=reset_time,
            total_hits=total_hits,
            limit=max_attempts,
        )

    @staticmethod
    def record_attempt(
        db: Session,
        identifier: str,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        email: Optional[str] = None,
        username: Optional[str] = None,
        user_id: Optional[int] = None,
        fail_reason: Optional[str] = None,
    ) -> Optional[LoginAttempt]:
        """Append to the attempt log. Failures are logged, never raised."""
        try:
            attempt = LoginAttempt(
                identifier=identifier,
                ip_address=helpers.clamp(ip_address, MAX_IP_LENGTH),
                user_agent=helpers.clamp(user_agent, MAX_USER_AGENT_LENGTH),
                email=email,
                username=username,
                user_id=user_id,
                success=success,
                fail_reason=fail_reason,
                created_at=helpers.utcnow(),
            )
            db.add(attempt)
            db.commit()
            return attempt
        except Exception as e:
            logger.error(f"Failed to record attempt for {identifier}: {e}")
            db.rollback()
            return None

    def whitelist_ip(self, db: Session, ip_address: str) -> int:
        """Trust ``ip_address`` and forget its recent failures."""
        self.reputation.whitelist(ip_address)
        result = db.execute(
            delete(LoginAttempt).where(
                LoginAttempt.ip_address == ip_address,
                LoginAttempt.success.is_(False),
                LoginAttempt.created_at >= helpers.utcnow() - timedelta(hours=24),
            )
        )
        db.commit()
        logger.info(f"IP {ip_address} whitelisted, cleared {result.rowcount} failed attempts")
        return result.rowcount

    def blacklist_ip(self, ip_address: str):
        self.reputation.blacklist(ip_address)
        logger.warning(f"IP {ip_address} blacklisted")

    @staticmethod
    def cleanup(db: Session, older_than: Optional[timedelta] = None) -> int:
        cutoff = helpers.utcnow() - (older_than or timedelta(hours=settings.ATTEMPT_RETENTION_HOURS))
        try:
            result = db.execute(delete(LoginAttempt).where(LoginAttempt.created_at < cutoff))
            db.commit()
            return result.rowcount
        except Exception as e:
            logger.error(f"Rate limit cleanup failed: {e}")
            db.rollback()
            return 0

    def get_stats(self, db: Session, ip_address: str, window: timedelta = timedelta(hours=1)) -> dict:
        now = helpers.utcnow()
        attempts = (
            db.query(LoginAttempt)
            .filter(LoginAttempt.ip_address == ip_address, LoginAttempt.created_at >= now - window)
            .order_by(LoginAttempt.created_at.desc())
            .all()
        )
        successful = sum(1 for a in attempts if a.success)
        login_tier = RATE_LIMIT_CONFIGS["auth_login"]
        recent_failures = sum(
            1 for a in attempts if not a.success and a.created_at >= now - login_tier.window
        )
        return {
            "ip_address": ip_address,
            "total_attempts": len(attempts),
            "successful_attempts": successful,
            "failed_attempts": len(attempts) - successful,
            "last_attempt": attempts[0].created_at.isoformat() if attempts else None,
            "is_currently_blocked": recent_failures >= login_tier.max_attempts,
            "reputation": self.reputation.to_dict(ip_address),
        }


rate_limiter = RateLimiter(build_tracker(kv_store))
