"""Periodic sweeps over expired auth records."""
import logging

from sqlalchemy.orm import Session

from authgate.services.rate_limiter import RateLimiter
from authgate.services.session_service import SessionService
from authgate.services.token_service import TokenService

logger = logging.getLogger(__name__)


def run_cleanup(db: Session) -> dict:
    """Idempotent; safe to run on any schedule."""
    summary = TokenService.cleanup_expired(db)
    summary["sessions"] = SessionService.cleanup_expired(db)
    summary["login_attempts"] = RateLimiter.cleanup(db)
    logger.info(f"Cleanup finished: {summary}")
    return summary
