"""Sliding-window limits, block escalation and fail-open behaviour."""
import json
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from authgate.cache.store import MemoryStore
from authgate.models.login_attempt import LoginAttempt
from authgate.services.rate_limiter import RATE_LIMIT_CONFIGS, RateLimitConfig, RateLimiter
from authgate.services.reputation import IPReputationTracker

IP = "203.0.113.5"

BLOCKING = RateLimitConfig(
    name="test_block",
    window=timedelta(minutes=15),
    max_attempts=3,
    block_duration=timedelta(minutes=30),
    skip_successful=True,
    adaptive=False,
)
PLAIN = RateLimitConfig(name="test_plain", window=timedelta(minutes=1), max_attempts=2, adaptive=False)


class BrokenDB:
    """Stands in for a database that is down."""

    def __init__(self):
        self.rolled_back = False

    def query(self, *args, **kwargs):
        raise SQLAlchemyError("database unavailable")

    def add(self, *args, **kwargs):
        raise SQLAlchemyError("database unavailable")

    def rollback(self):
        self.rolled_back = True


@pytest.fixture
def limiter():
    return RateLimiter(IPReputationTracker(MemoryStore()))


def _fail(db, identifier, ip=IP):
    return RateLimiter.record_attempt(db, identifier, False, ip_address=ip, fail_reason="invalid_password")


def test_window_counts_hits(db_session, limiter, clock):
    identifier = f"test_plain:{IP}"
    first = limiter.check_rate_limit(db_session, identifier, PLAIN, ip_address=IP)
    assert first.allowed and first.remaining == 2 and first.limit == 2

    RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)
    RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)
    denied = limiter.check_rate_limit(db_session, identifier, PLAIN, ip_address=IP)
    assert not denied.allowed
    assert not denied.is_blocked
    assert denied.remaining == 0
    assert denied.total_hits == 2

    clock.advance(minutes=2)
    assert limiter.check_rate_limit(db_session, identifier, PLAIN, ip_address=IP).allowed


def test_block_holds_until_expiry(db_session, limiter, clock):
    identifier = f"test_block:{IP}"
    for _ in range(3):
        _fail(db_session, identifier)
        clock.advance(minutes=1)
    last_failure = clock.now - timedelta(minutes=1)

    blocked = limiter.check_rate_limit(db_session, identifier, BLOCKING, ip_address=IP)
    assert not blocked.allowed
    assert blocked.is_blocked
    assert blocked.block_expires_at == last_failure + timedelta(minutes=30)
    assert blocked.retry_after > 0

    # Past the window but still inside the block
    clock.advance(minutes=20)
    still = limiter.check_rate_limit(db_session, identifier, BLOCKING, ip_address=IP)
    assert still.is_blocked

    clock.advance(minutes=10)
    released = limiter.check_rate_limit(db_session, identifier, BLOCKING, ip_address=IP)
    assert released.allowed
    assert not released.is_blocked


def test_successes_ignored_when_skipped(db_session, limiter):
    identifier = f"test_block:{IP}"
    for _ in range(5):
        RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)
    _fail(db_session, identifier)
    result = limiter.check_rate_limit(db_session, identifier, BLOCKING, ip_address=IP)
    assert result.allowed
    assert result.total_hits == 1
    assert result.remaining == 2


def test_limits_are_per_identifier(db_session, limiter):
    for _ in range(3):
        _fail(db_session, "test_block:198.51.100.1", ip="198.51.100.1")
    assert not limiter.check_rate_limit(db_session, "test_block:198.51.100.1", BLOCKING).allowed
    assert limiter.check_rate_limit(db_session, "test_block:198.51.100.2", BLOCKING).allowed


def test_fails_open_when_database_is_down(limiter):
    db = BrokenDB()
    result = limiter.check_rate_limit(db, f"test_block:{IP}", BLOCKING, ip_address=IP)
    assert result.allowed
    assert result.remaining == BLOCKING.max_attempts
    assert db.rolled_back


def test_record_attempt_never_raises():
    db = BrokenDB()
    assert RateLimiter.record_attempt(db, "x", False) is None
    assert db.rolled_back


def test_whitelisted_and_blacklisted_ips(db_session, limiter):
    identifier = f"test_block:{IP}"
    for _ in range(3):
        _fail(db_session, identifier)

    limiter.reputation.whitelist(IP)
    assert limiter.check_rate_limit(db_session, identifier, BLOCKING, ip_address=IP).allowed

    limiter.blacklist_ip(IP)
    denied = limiter.check_rate_limit(db_session, "test_plain:other", PLAIN, ip_address=IP)
    assert not denied.allowed
    assert denied.is_blocked
    assert denied.extra["reason"] == "ip_blacklisted"


def test_whitelist_ip_clears_recent_failures(db_session, limiter):
    identifier = f"test_block:{IP}"
    for _ in range(3):
        _fail(db_session, identifier)
    RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)

    assert limiter.whitelist_ip(db_session, IP) == 3
    assert db_session.query(LoginAttempt).filter(LoginAttempt.ip_address == IP).count() == 1
    assert limiter.reputation.is_whitelisted(IP)


def test_adaptive_limits(limiter):
    tier = RateLimitConfig(name="test_adaptive", window=timedelta(minutes=15), max_attempts=10)
    assert limiter.adaptive_max_attempts(tier) == 10
    # Fresh IPs start at 100 and earn the trusted bonus
    assert limiter.adaptive_max_attempts(tier, ip_address=IP) == 12
    assert limiter.adaptive_max_attempts(tier, user_role="admin", ip_address=IP) == 36
    assert limiter.adaptive_max_attempts(tier, user_role="authenticated") == 15

    limiter.reputation.store.set(f"reputation:{IP}", json.dumps({"score": 5, "violation_count": 12}))
    assert limiter.adaptive_max_attempts(tier, ip_address=IP) == 1
    small = RateLimitConfig(name="test_small", window=timedelta(minutes=1), max_attempts=2)
    assert limiter.adaptive_max_attempts(small, ip_address=IP) == 1

    limiter.reputation.store.set(f"reputation:{IP}", json.dumps({"score": 25}))
    assert limiter.adaptive_max_attempts(tier, user_role="admin", ip_address=IP) == 15


def test_credential_tiers_are_fixed(limiter):
    login = RATE_LIMIT_CONFIGS["auth_login"]
    assert login.max_attempts == 5
    assert login.block_duration == timedelta(minutes=30)
    assert limiter.adaptive_max_attempts(login, user_role="admin", ip_address=IP) == 5


def test_denials_hurt_reputation(db_session, limiter):
    identifier = f"test_plain:{IP}"
    RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)
    RateLimiter.record_attempt(db_session, identifier, True, ip_address=IP)
    limiter.check_rate_limit(db_session, identifier, PLAIN, ip_address=IP)
    reputation = limiter.reputation.get(IP)
    assert reputation.violation_count == 1
    assert reputation.score == 88


def test_cleanup_and_stats(db_session, limiter, clock):
    _fail(db_session, f"auth_login:{IP}")
    _fail(db_session, f"auth_login:{IP}")
    RateLimiter.record_attempt(db_session, f"auth_login:{IP}", True, ip_address=IP)

    stats = limiter.get_stats(db_session, IP)
    assert stats["total_attempts"] == 3
    assert stats["successful_attempts"] == 1
    assert stats["failed_attempts"] == 2
    assert stats["is_currently_blocked"] is False
    assert stats["reputation"]["score"] == 100

    clock.advance(hours=25)
    assert RateLimiter.cleanup(db_session) == 3
