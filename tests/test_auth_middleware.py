"""Request admission through AuthMiddleware.authenticate."""
from datetime import timedelta

from fastapi import Response

from authgate.core.config import settings
from authgate.middleware.auth import AuthMiddleware, AuthOptions
from authgate.models.login_attempt import LoginAttempt
from authgate.services.session_service import SessionService
from authgate.services.token_service import TokenService
from authgate.utils.request_context import RequestContext


def _signed_in(db, user):
    return SessionService.create_session_with_tokens(db, user, ip_address="10.1.1.1", user_agent="pytest")


def _ctx(token=None, method="GET", cookies=None, headers=None):
    all_headers = dict(headers or {})
    if token:
        all_headers["Authorization"] = f"Bearer {token}"
    return RequestContext(method=method, headers=all_headers, cookies=cookies or {}, client_ip="10.1.1.1")


def test_extract_token_order():
    assert AuthMiddleware.extract_token(_ctx()) == (None, None)
    assert AuthMiddleware.extract_token(_ctx(cookies={"auth-token": "c"})) == ("c", "cookie")
    assert AuthMiddleware.extract_token(
        _ctx(cookies={"auth-token": "c", "session-token": "s"})
    ) == ("s", "session")
    assert AuthMiddleware.extract_token(
        _ctx(token="b", cookies={"auth-token": "c", "session-token": "s"})
    ) == ("b", "bearer")
    assert AuthMiddleware.extract_token(_ctx(headers={"Authorization": "Basic abc"})) == (None, None)


def test_missing_token(db_session):
    result = AuthMiddleware.authenticate(db_session, _ctx())
    assert result.error_code == "TOKEN_MISSING"
    assert result.status_code == 401

    anonymous = AuthMiddleware.authenticate(db_session, _ctx(), AuthOptions(require_auth=False))
    assert anonymous.ok and anonymous.value is None


def test_bearer_access_token(db_session, user):
    created, pair = _signed_in(db_session, user)
    result = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token))
    assert result.ok
    auth = result.value
    assert auth.user_id == user.id
    assert auth.source == "bearer"
    assert auth.session.id == created.session.id
    assert auth.to_dict()["auth_method"] == "credentials"


def test_session_cookie_authenticates(db_session, user):
    created, _ = _signed_in(db_session, user)
    result = AuthMiddleware.authenticate(db_session, _ctx(cookies={"session-token": created.session_token}))
    assert result.ok
    assert result.value.source == "session"
    assert result.value.claims["session_id"] == created.session.id

    SessionService.invalidate(db_session, created.session_token)
    rejected = AuthMiddleware.authenticate(db_session, _ctx(cookies={"session-token": created.session_token}))
    assert rejected.error_code == "SESSION_INVALID"


def test_refresh_token_only_where_allowed(db_session, user):
    _, pair = _signed_in(db_session, user)
    rejected = AuthMiddleware.authenticate(db_session, _ctx(pair.refresh_token))
    assert rejected.error_code == "TOKEN_TYPE_NOT_ALLOWED"

    allowed = AuthMiddleware.authenticate(
        db_session, _ctx(pair.refresh_token), AuthOptions(allow_refresh_token=True)
    )
    assert allowed.ok


def test_blacklisted_and_expired_tokens(db_session, user, clock):
    _, pair = _signed_in(db_session, user)
    TokenService.blacklist(db_session, pair.access_token)
    assert AuthMiddleware.authenticate(db_session, _ctx(pair.access_token)).error_code == "TOKEN_BLACKLISTED"

    _, fresh = _signed_in(db_session, user)
    clock.advance(minutes=16)
    assert AuthMiddleware.authenticate(db_session, _ctx(fresh.access_token)).error_code == "TOKEN_EXPIRED"


def test_deleted_user(db_session, make_user):
    doomed = make_user()
    access = TokenService.issue_access_token(TokenService.build_claims(doomed))
    db_session.delete(doomed)
    db_session.commit()
    result = AuthMiddleware.authenticate(db_session, _ctx(access.token))
    assert result.error_code == "USER_NOT_FOUND"


def test_locked_user(db_session, user, clock):
    _, pair = _signed_in(db_session, user)
    user.lock(clock.now + timedelta(minutes=30))
    db_session.commit()

    result = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token))
    assert result.error_code == "LOCKED"
    assert result.status_code == 423


def test_expired_lock_is_lifted(db_session, user, clock):
    user.lock(clock.now + timedelta(minutes=30))
    db_session.commit()
    clock.advance(minutes=31)
    # Token issued after the clock moved so it is still valid
    _, pair = _signed_in(db_session, user)

    result = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token))
    assert result.ok
    db_session.refresh(user)
    assert user.is_locked is False
    assert user.locked_until is None


def test_role_requirements(db_session, make_user):
    member = make_user()
    admin = make_user(role="admin")
    _, member_pair = _signed_in(db_session, member)
    _, admin_pair = _signed_in(db_session, admin)
    options = AuthOptions(required_roles=("admin",))

    denied = AuthMiddleware.authenticate(db_session, _ctx(member_pair.access_token), options)
    assert denied.error_code == "FORBIDDEN"
    assert denied.status_code == 403
    assert AuthMiddleware.authenticate(db_session, _ctx(admin_pair.access_token), options).ok


def test_csrf_required(db_session, user):
    created, pair = _signed_in(db_session, user)
    options = AuthOptions(require_csrf=True)

    missing = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token, method="POST"), options)
    assert missing.error_code == "CSRF_TOKEN_INVALID"

    ctx = _ctx(
        pair.access_token,
        method="POST",
        cookies={"csrf-token": created.csrf_token},
        headers={"X-CSRF-Token": created.csrf_token},
    )
    assert AuthMiddleware.authenticate(db_session, ctx, options).ok

    safe = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token, method="GET"), options)
    assert safe.ok


def test_strict_session_binding(db_session, user, monkeypatch):
    created, pair = _signed_in(db_session, user)
    SessionService.invalidate(db_session, created.session_token)

    result = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token))
    assert result.error_code == "SESSION_INVALID"

    monkeypatch.setattr(settings, "STRICT_SESSION_BINDING", False)
    relaxed = AuthMiddleware.authenticate(db_session, _ctx(pair.access_token))
    assert relaxed.ok
    assert relaxed.value.session is None


def test_token_without_session_claim(db_session, user):
    access = TokenService.issue_access_token(TokenService.build_claims(user))
    result = AuthMiddleware.authenticate(db_session, _ctx(access.token))
    assert result.ok
    assert result.value.session is None


def test_check_and_lock_user(db_session, user, clock):
    ctx = _ctx()
    for _ in range(4):
        AuthMiddleware.log_auth_attempt(db_session, ctx, False, user_id=user.id, reason="invalid_password")
    assert AuthMiddleware.check_and_lock_user(db_session, user) is False

    AuthMiddleware.log_auth_attempt(db_session, ctx, False, user_id=user.id, reason="invalid_password")
    assert AuthMiddleware.check_and_lock_user(db_session, user) is True
    assert user.is_locked
    assert user.locked_until == clock.now + timedelta(minutes=30)

    attempts = db_session.query(LoginAttempt).filter(LoginAttempt.user_id == user.id).all()
    assert len(attempts) == 5
    assert {a.identifier for a in attempts} == {"auth_login:10.1.1.1"}


def test_security_headers():
    response = AuthMiddleware.add_security_headers(Response())
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" not in response.headers
