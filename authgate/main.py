from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from authgate.core.logger import setup_logging
from authgate.middleware.cors import configure_cors
from authgate.middleware.logging import RequestLoggerMiddleware
from authgate.middleware.security_headers import SecurityHeadersMiddleware
from authgate.middleware import error_handler
from authgate.utils.errors import ApiError

# Routers
from authgate.routers import auth as auth_router
from authgate.routers import passkeys as passkeys_router
from authgate.routers import users as users_router
from authgate.routers import admin as admin_router
from authgate.routers import health as health_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    setup_logging()
    description = (
        "Authgate authentication service.\n\n"
        "Credentials, Google and passkey sign-in with server-side sessions, "
        "rotating refresh tokens, CSRF protection and tiered rate limiting."
    )

    openapi_tags = [
        {"name": "authentication", "description": "Register, login, refresh, logout and session status."},
        {"name": "passkeys", "description": "WebAuthn registration, sign-in and passkey management."},
        {"name": "users", "description": "Profile, password and session management for the signed-in user."},
        {"name": "admin", "description": "Account locks, forced logout, IP lists and maintenance."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title="Authgate API",
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
    )

    # Middleware
    configure_cors(app)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggerMiddleware)

    # Exception handlers
    app.add_exception_handler(ApiError, error_handler.api_error_handler)
    app.add_exception_handler(StarletteHTTPException, error_handler.http_exception_handler)
    app.add_exception_handler(RequestValidationError, error_handler.validation_exception_handler)
    app.add_exception_handler(Exception, error_handler.unhandled_exception_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(auth_router.router)
    app.include_router(passkeys_router.router)
    app.include_router(users_router.router)
    app.include_router(admin_router.router)

    return app


app = create_app()
