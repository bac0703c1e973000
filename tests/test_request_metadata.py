"""Client address and user-agent handling for logged request metadata."""
from starlette.requests import Request

from conftest import PASSWORD
from authgate.models.login_attempt import LoginAttempt
from authgate.models.session import Session
from authgate.services.rate_limiter import RateLimiter
from authgate.services.session_service import SessionService
from authgate.utils.helpers import get_client_ip, normalize_ip


def _request(headers=None, client=("10.0.0.9", 5000)):
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    })


def test_normalize_ip():
    assert normalize_ip("203.0.113.7") == "203.0.113.7"
    assert normalize_ip(" 2001:DB8::1 ") == "2001:db8::1"
    assert normalize_ip("not-an-ip") is None
    assert normalize_ip("1" * 60) is None
    assert normalize_ip("") is None
    assert normalize_ip(None) is None


def test_client_ip_prefers_valid_forwarded_entry():
    assert get_client_ip(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"
    assert get_client_ip(_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"
    assert get_client_ip(_request()) == "10.0.0.9"
    assert get_client_ip(_request(client=None)) == "unknown"


def test_client_ip_skips_headers_that_are_not_addresses():
    forged = "a" * 60
    assert get_client_ip(_request({"X-Forwarded-For": forged})) == "10.0.0.9"
    assert get_client_ip(_request({"X-Forwarded-For": forged, "X-Client-IP": "198.51.100.9"})) == "198.51.100.9"


def test_record_attempt_clamps_metadata(db_session):
    attempt = RateLimiter.record_attempt(
        db_session, "auth_login:203.0.113.7", False, ip_address="9" * 80, user_agent="x" * 2000
    )
    assert attempt is not None
    assert len(attempt.ip_address) == 45
    assert len(attempt.user_agent) == 512


def test_session_create_clamps_metadata(db_session, user):
    created = SessionService.create(db_session, user.id, ip_address="9" * 80, user_agent="Mozilla " * 300)
    assert len(created.session.ip_address) == 45
    assert len(created.session.user_agent) == 512


async def test_failed_login_with_forged_headers_is_still_counted(async_client, db_session, user):
    headers = {"X-Forwarded-For": "z" * 60, "User-Agent": "U" * 4096}
    for _ in range(2):
        r = await async_client.post(
            "/auth/login", json={"email": user.email, "password": "WrongPassw0rd!"}, headers=headers
        )
        assert r.status_code == 401

    attempts = db_session.query(LoginAttempt).filter(
        LoginAttempt.identifier == "auth_login:127.0.0.1", LoginAttempt.success.is_(False)
    ).all()
    assert len(attempts) == 2
    for attempt in attempts:
        assert attempt.ip_address == "127.0.0.1"
        assert len(attempt.user_agent) == 512

    r = await async_client.post("/auth/login", json={"email": user.email, "password": PASSWORD}, headers=headers)
    assert r.status_code == 200
    session = db_session.query(Session).filter(Session.user_id == user.id).one()
    assert len(session.user_agent) == 512
