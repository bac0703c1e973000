from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
import secrets
import hashlib
import hmac
import logging
from authgate.core.config import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

DEFAULT_EXPIRY = timedelta(minutes=15)

_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def hash_password(password: str) -> str:
    if not password or not isinstance(password, str):
        raise ValueError("Password must be a non-empty string")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    if not isinstance(plain_password, str):
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        return False


def hash_token(token: str) -> str:
    # Lone surrogates from JSON escapes must still hash instead of raising
    return hashlib.sha256(token.encode("utf-8", "surrogatepass")).hexdigest()


def tokens_match(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(left.encode("utf-8", "surrogatepass"), right.encode("utf-8", "surrogatepass"))


def generate_jti() -> str:
    return secrets.token_hex(16)


def generate_session_token() -> str:
    return secrets.token_hex(32)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def parse_expiry(expiry: str) -> timedelta:
    """Turn a unit-suffixed duration (``30s``, ``15m``, ``12h``, ``7d``) into a timedelta.

    Unknown suffixes and malformed numbers fall back to 15 minutes.
    """
    if not expiry:
        return DEFAULT_EXPIRY
    unit = _UNITS.get(expiry[-1])
    try:
        value = int(expiry[:-1])
    except ValueError:
        unit = None
    if unit is None:
        logger.warning("Unrecognised expiry %r, defaulting to 15 minutes", expiry)
        return DEFAULT_EXPIRY
    return timedelta(**{unit: value})


def encode_jwt(payload: Dict[str, Any]) -> str:
    return jwt.encode(
        payload,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_jwt(token: str) -> Dict[str, Any]:
    """Check signature, issuer and audience. Expiry is left to the caller's clock.

    Raises ``jose.JWTError`` on any failure, including tokens that are not valid UTF-8 text.
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options={"verify_exp": False},
        )
    except UnicodeError as e:
        raise JWTError(f"Token is not valid text: {e}") from e
