"""Models package."""

__all__ = [
    "base",
    "user",
    "session",
    "refresh_token",
    "token_blacklist",
    "login_attempt",
    "webauthn",
]
