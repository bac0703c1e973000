"""Profile and account endpoints for the signed-in user."""
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from authgate.core.database import get_db
from authgate.dependencies.auth import get_current_user, get_current_user_csrf
from authgate.dependencies.rate_limit import rate_limit
from authgate.schemas.auth import ChangePasswordRequest, ChangeUsernameRequest, DeleteAccountRequest
from authgate.services.auth_service import AuthService
from authgate.services.session_service import SessionService
from authgate.services.user_service import UserService
from authgate.utils.errors import NotFound

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
async def get_profile(
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_profile")),
):
    return {"success": True, "data": UserService.profile(db, auth.user)}


@router.patch("/me")
async def update_profile(
    request: ChangeUsernameRequest,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("api_profile_update")),
):
    user = UserService.change_username(db, auth.user, request.username)
    return {"success": True, "data": user.to_summary()}


@router.post("/me/password")
async def change_password(
    request: ChangePasswordRequest,
    response: Response,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_change_password")),
):
    result = AuthService.change_password(db, auth, request.current_password, request.new_password)
    SessionService.clear_session_cookies(response)
    return {"success": True, "data": {"message": "Password changed. Please sign in again.", **result}}


@router.delete("/me")
async def delete_account(
    response: Response,
    request: Optional[DeleteAccountRequest] = None,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
):
    AuthService.delete_account(db, auth, request.password if request else None)
    SessionService.clear_session_cookies(response)
    return {"success": True, "data": {"message": "Account deleted"}}


@router.get("/me/sessions")
async def list_sessions(auth=Depends(get_current_user), db: Session = Depends(get_db)):
    sessions = SessionService.list_active(db, auth.user_id)
    current = auth.session.id if auth.session else None
    return {
        "success": True,
        "data": [{**s.to_summary(), "current": s.id == current} for s in sessions],
    }


@router.delete("/me/sessions/{session_id}")
async def revoke_session(
    session_id: str,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
):
    if not SessionService.invalidate_by_id(db, session_id, user_id=auth.user_id):
        raise NotFound("Session")
    return {"success": True, "data": {"message": "Session revoked"}}
