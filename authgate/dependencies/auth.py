from typing import Optional, Sequence

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from authgate.core.constants import UserRole
from authgate.core.database import get_db
from authgate.middleware.auth import AuthContext, AuthMiddleware, AuthOptions
from authgate.utils.request_context import RequestContext


def require_auth(
    roles: Sequence[str] = (),
    csrf: bool = False,
    allow_refresh_token: bool = False,
    optional: bool = False,
):
    """Build a dependency that admits the request or raises the matching ApiError."""
    options = AuthOptions(
        require_auth=not optional,
        required_roles=tuple(roles),
        require_csrf=csrf,
        allow_refresh_token=allow_refresh_token,
    )

    async def dependency(request: Request, db: Session = Depends(get_db)) -> Optional[AuthContext]:
        ctx = RequestContext.from_request(request)
        result = AuthMiddleware.authenticate(db, ctx, options)
        if not result.ok:
            raise result.to_exception()
        request.state.auth = result.value
        return result.value

    return dependency


get_current_user = require_auth()
get_current_user_csrf = require_auth(csrf=True)
get_current_admin = require_auth(roles=[UserRole.ADMIN.value])
get_current_admin_csrf = require_auth(roles=[UserRole.ADMIN.value], csrf=True)
