"""Services package."""

__all__ = [
    "auth_service",
    "maintenance",
    "rate_limiter",
    "reputation",
    "session_service",
    "token_service",
    "user_service",
    "webauthn_service",
]
