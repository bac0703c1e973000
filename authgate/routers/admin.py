from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from authgate.core.database import get_db
from authgate.dependencies.auth import get_current_admin, get_current_admin_csrf
from authgate.dependencies.rate_limit import rate_limit
from authgate.schemas.common import IPRequest
from authgate.services.maintenance import run_cleanup
from authgate.services.rate_limiter import rate_limiter
from authgate.services.user_service import UserService

router = APIRouter(prefix="/admin", tags=["admin"])

# Endpoints list this after their admin dependency so the caller's role is known
admin_rate_limit = rate_limit("api_admin")


@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    admin=Depends(get_current_admin),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": UserService.list_users(db, page=page, size=size)}


@router.post("/users/{user_id}/lock")
async def lock_user(
    user_id: int,
    minutes: Optional[int] = Query(None, ge=0),
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    user = UserService.lock(db, user_id, minutes=minutes)
    return {
        "success": True,
        "data": {
            **user.to_summary(),
            "locked_until": user.locked_until.isoformat() if user.locked_until else None,
        },
    }


@router.post("/users/{user_id}/unlock")
async def unlock_user(
    user_id: int,
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    user = UserService.unlock(db, user_id)
    return {"success": True, "data": user.to_summary()}


@router.post("/users/{user_id}/logout")
async def force_logout(
    user_id: int,
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": UserService.force_logout(db, user_id)}


@router.post("/ip/whitelist")
async def whitelist_ip(
    request: IPRequest,
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    cleared = rate_limiter.whitelist_ip(db, request.ip_address)
    return {"success": True, "data": {"ip_address": request.ip_address, "cleared_failures": cleared}}


@router.post("/ip/blacklist")
async def blacklist_ip(
    request: IPRequest,
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
):
    rate_limiter.blacklist_ip(request.ip_address)
    return {"success": True, "data": {"ip_address": request.ip_address, "blacklisted": True}}


@router.get("/rate-limit/stats")
async def rate_limit_stats(
    ip: str = Query(...),
    window_minutes: int = Query(60, ge=1, le=24 * 60),
    admin=Depends(get_current_admin),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    stats = rate_limiter.get_stats(db, ip, window=timedelta(minutes=window_minutes))
    return {"success": True, "data": stats}


@router.post("/maintenance/cleanup")
async def cleanup(
    admin=Depends(get_current_admin_csrf),
    _=Depends(admin_rate_limit),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": run_cleanup(db)}
