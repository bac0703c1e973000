from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from authgate.core.database import get_db
from authgate.dependencies.auth import get_current_user, get_current_user_csrf
from authgate.dependencies.rate_limit import rate_limit
from authgate.routers.auth import sign_in_response
from authgate.schemas.passkey import (
    PasskeyAuthenticationOptionsRequest,
    PasskeyAuthenticationVerifyRequest,
    PasskeyRegistrationVerifyRequest,
    PasskeyRenameRequest,
)
from authgate.services.auth_service import AuthService
from authgate.services.webauthn_service import webauthn_service
from authgate.utils.request_context import RequestContext

router = APIRouter(prefix="/auth/passkey", tags=["passkeys"])


@router.post("/register/options")
async def registration_options(
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_profile")),
):
    return {"success": True, "data": webauthn_service.registration_options(db, auth.user)}


@router.post("/register/verify", status_code=201)
async def registration_verify(
    request: PasskeyRegistrationVerifyRequest,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_profile")),
):
    result = webauthn_service.verify_registration(
        db, auth.user, request.ceremony_id, request.credential, nickname=request.nickname,
    )
    if not result.ok:
        raise result.to_exception()
    return {"success": True, "data": {"message": "Passkey registered", "passkey": result.value.to_summary()}}


@router.post("/authenticate/options")
async def authentication_options(
    request: Optional[PasskeyAuthenticationOptionsRequest] = None,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_login", "Too many login attempts")),
):
    result = webauthn_service.authentication_options(db, username=request.username if request else None)
    if not result.ok:
        raise result.to_exception()
    return {"success": True, "data": result.value}


@router.post("/authenticate/verify")
async def authentication_verify(
    request: PasskeyAuthenticationVerifyRequest,
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _=Depends(rate_limit("auth_login", "Too many login attempts")),
):
    result = AuthService.passkey_login(
        db,
        RequestContext.from_request(http_request),
        request.ceremony_id,
        request.credential,
        remember_me=request.remember_me,
    )
    return {"success": True, "data": sign_in_response(response, result)}


@router.get("")
async def list_passkeys(auth=Depends(get_current_user), db: Session = Depends(get_db)):
    passkeys = webauthn_service.list_credentials(db, auth.user_id)
    return {"success": True, "data": [p.to_summary() for p in passkeys]}


@router.patch("/{passkey_id}")
async def rename_passkey(
    passkey_id: str,
    request: PasskeyRenameRequest,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
):
    result = webauthn_service.rename_credential(db, auth.user_id, passkey_id, request.nickname)
    if not result.ok:
        raise result.to_exception()
    return {"success": True, "data": result.value.to_summary()}


@router.delete("/{passkey_id}")
async def delete_passkey(
    passkey_id: str,
    auth=Depends(get_current_user_csrf),
    db: Session = Depends(get_db),
):
    result = webauthn_service.delete_credential(db, auth.user, passkey_id)
    if not result.ok:
        raise result.to_exception()
    return {"success": True, "data": {"message": "Passkey removed"}}
