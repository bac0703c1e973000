"""Application constants: roles, token types, cookie names and error kinds."""
from enum import Enum


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class AuthMethod(str, Enum):
    CREDENTIALS = "credentials"
    PASSKEY = "passkey"
    OAUTH = "oauth"


class ErrorKind(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    LOCKED = "LOCKED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.LOCKED: 423,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL_ERROR: 500,
}

SESSION_COOKIE_NAME = "session-token"
CSRF_COOKIE_NAME = "csrf-token"
CSRF_HEADER_NAME = "x-csrf-token"
AUTH_COOKIE_NAME = "auth-token"
REFRESH_COOKIE_NAME = "refresh-token"

# Column widths for client-supplied request metadata
MAX_IP_LENGTH = 45
MAX_USER_AGENT_LENGTH = 512

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

RESERVED_USERNAMES = frozenset({"admin", "root", "system", "api", "www", "mail", "support"})
