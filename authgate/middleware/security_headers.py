"""Attach standard security headers to every response."""
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware

from authgate.middleware.auth import AuthMiddleware


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return AuthMiddleware.add_security_headers(response)
