"""Custom error definitions for API exceptions."""
from typing import Any, Dict, Optional

from fastapi import HTTPException
from starlette import status

from authgate.core.constants import ErrorKind


class ApiError(HTTPException):
    """HTTP error carrying a stable machine-readable ``code``."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.message = message
        self.details = details


class Unauthorized(ApiError):
    def __init__(self, message: str = "Authentication required", code: str = ErrorKind.UNAUTHORIZED.value):
        super().__init__(status.HTTP_401_UNAUTHORIZED, code, message)


class InvalidCredentialsError(Unauthorized):
    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)



class AccountLocked(ApiError):
    def __init__(self, message: str = "Account is locked"):
        super().__init__(status.HTTP_423_LOCKED, ErrorKind.LOCKED.value, message)


class ValidationFailed(ApiError):
    def __init__(self, message: str, details: Any = None, code: str = ErrorKind.VALIDATION_ERROR.value):
        super().__init__(status.HTTP_400_BAD_REQUEST, code, message, details=details)


class Conflict(ApiError):
    def __init__(self, message: str):
        super().__init__(status.HTTP_409_CONFLICT, ErrorKind.CONFLICT.value, message)


class NotFound(ApiError):
    def __init__(self, resource: str = "Resource"):
        super().__init__(status.HTTP_404_NOT_FOUND, ErrorKind.NOT_FOUND.value, f"{resource} not found")


class RateLimitExceeded(ApiError):
    def __init__(self, message: str, retry_after: int, headers: Optional[Dict[str, str]] = None, details: Any = None):
        merged = {"Retry-After": str(max(retry_after, 0))}
        merged.update(headers or {})
        super().__init__(
            status.HTTP_429_TOO_MANY_REQUESTS,
            ErrorKind.RATE_LIMIT_EXCEEDED.value,
            message,
            details=details,
            headers=merged,
        )
        self.retry_after = retry_after

