from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from authgate.core.constants import REFRESH_COOKIE_NAME, SESSION_COOKIE_NAME
from authgate.core.database import get_db
from authgate.dependencies.auth import get_current_user_csrf
from authgate.dependencies.rate_limit import rate_limit
from authgate.middleware.auth import AuthMiddleware, AuthOptions
from authgate.schemas.auth import (
    GoogleOAuthRequest, LoginRequest, LogoutRequest, RefreshTokenRequest, RegisterRequest,
)
from authgate.services.auth_service import AuthService, LoginResult
from authgate.services.session_service import SessionService
from authgate.utils.request_context import RequestContext

router = APIRouter(prefix="/auth", tags=["authentication"])


def sign_in_response(response: Response, result: LoginResult) -> dict:
    SessionService.set_session_cookies(
        response,
        result.session.session_token,
        result.session.csrf_token,
        remember_me=result.remember_me,
    )
    SessionService.set_token_cookies(response, result.tokens)
    return result.to_dict()


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_register", "Too many registration attempts")),
):
    """
    Create an account with email/username/password
    - Validate inputs and password policy
    - Create user
    - Sign the new user in
    """
    result = AuthService.register(
        db,
        RequestContext.from_request(http_request),
        email=request.email,
        username=request.username,
        password=request.password,
        remember_me=request.remember_me,
    )
    return {"success": True, "data": sign_in_response(response, result)}


@router.get("/availability")
async def availability(
    email: Optional[str] = Query(None, max_length=255),
    username: Optional[str] = Query(None, max_length=30),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_availability")),
):
    return {"success": True, "data": AuthService.check_availability(db, email=email, username=username)}


@router.post("/login")
async def login(
    request: LoginRequest,
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_login", "Too many login attempts")),
):
    """
    Email/password login
    - Verify credentials
    - Create session & tokens
    - Set session, CSRF and token cookies
    """
    result = AuthService.login(
        db,
        RequestContext.from_request(http_request),
        email=request.email,
        password=request.password,
        remember_me=request.remember_me,
    )
    return {"success": True, "data": sign_in_response(response, result)}


@router.post("/google")
async def google_login(
    request: GoogleOAuthRequest,
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_login", "Too many login attempts")),
):
    result = AuthService.google_oauth_login(
        db,
        RequestContext.from_request(http_request),
        request.id_token,
        remember_me=request.remember_me,
    )
    data = sign_in_response(response, result)
    data["created"] = result.created
    return {"success": True, "data": data}


@router.post("/refresh")
async def refresh(
    http_request: Request,
    response: Response,
    request: Optional[RefreshTokenRequest] = None,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_refresh")),
):
    """Rotate a refresh token (body or cookie) into a new pair."""
    token = (request.refresh_token if request else None) or http_request.cookies.get(REFRESH_COOKIE_NAME)
    pair = AuthService.refresh(db, RequestContext.from_request(http_request), token)
    SessionService.set_token_cookies(response, pair)
    return {"success": True, "data": pair.to_dict()}


@router.post("/logout")
async def logout(
    http_request: Request,
    response: Response,
    request: Optional[LogoutRequest] = None,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_logout")),
):
    request = request or LogoutRequest()
    result = AuthService.logout(
        db,
        auth,
        session_token=http_request.cookies.get(SESSION_COOKIE_NAME),
        refresh_token=request.refresh_token or http_request.cookies.get(REFRESH_COOKIE_NAME),
        logout_all=request.logout_all,
    )
    SessionService.clear_session_cookies(response)
    return {"success": True, "data": {"message": "Logged out", **result}}


@router.get("/session")
async def session_status(
    http_request: Request,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("api_read_only")),
):
    """Authentication status; never fails for anonymous callers."""
    ctx = RequestContext.from_request(http_request)
    result = AuthMiddleware.authenticate(db, ctx, AuthOptions(require_auth=False))
    if not result.ok or result.value is None:
        return {"success": True, "data": {"authenticated": False}}

    auth = result.value
    return {
        "success": True,
        "data": {
            "authenticated": True,
            **auth.to_dict(),
            "stats": SessionService.get_stats(db, auth.user_id),
        },
    }
