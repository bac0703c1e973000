import os
from typing import Optional, List
from dotenv import load_dotenv

load_dotenv()


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    ENV: str = os.getenv("ENV", "local")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"
    DATABASE_POOL_SIZE: int = int(os.getenv("DATABASE_POOL_SIZE", 20))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv("DATABASE_MAX_OVERFLOW", 10))

    # JWT
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me-in-production")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "authgate")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "authgate-users")
    ACCESS_TOKEN_EXPIRY: str = os.getenv("ACCESS_TOKEN_EXPIRY", "15m")
    REFRESH_TOKEN_EXPIRY: str = os.getenv("REFRESH_TOKEN_EXPIRY", "7d")
    REMEMBER_ME_EXPIRY: str = os.getenv("REMEMBER_ME_EXPIRY", "30d")

    # Sessions
    SESSION_EXPIRY_HOURS: int = int(os.getenv("SESSION_EXPIRY_HOURS", 24))
    REMEMBER_ME_SESSION_DAYS: int = int(os.getenv("REMEMBER_ME_SESSION_DAYS", 30))
    STRICT_SESSION_BINDING: bool = os.getenv("STRICT_SESSION_BINDING", "True").lower() == "true"

    # Account lockout
    ACCOUNT_LOCK_MAX_FAILURES: int = int(os.getenv("ACCOUNT_LOCK_MAX_FAILURES", 5))
    ACCOUNT_LOCK_MINUTES: int = int(os.getenv("ACCOUNT_LOCK_MINUTES", 30))
    ACCOUNT_LOCK_WINDOW_MINUTES: int = int(os.getenv("ACCOUNT_LOCK_WINDOW_MINUTES", 60))

    # Rate Limiting / IP reputation
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "True").lower() == "true"
    ATTEMPT_RETENTION_HOURS: int = int(os.getenv("ATTEMPT_RETENTION_HOURS", 24))
    WHITELISTED_IPS: List[str] = _split(os.getenv("WHITELISTED_IPS"))
    BLACKLISTED_IPS: List[str] = _split(os.getenv("BLACKLISTED_IPS"))
    REPUTATION_TTL_SECONDS: int = int(os.getenv("REPUTATION_TTL_SECONDS", 7 * 24 * 3600))

    # Shared key-value store
    KV_BACKEND: str = os.getenv("KV_BACKEND", "memory")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = _split(
        os.getenv("BACKEND_CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")
    )

    # WebAuthn
    WEBAUTHN_RP_ID: str = os.getenv("WEBAUTHN_RP_ID", "localhost")
    WEBAUTHN_RP_NAME: str = os.getenv("WEBAUTHN_RP_NAME", "Authgate")
    WEBAUTHN_ORIGIN: str = os.getenv("WEBAUTHN_ORIGIN", "http://localhost:3001")
    WEBAUTHN_CHALLENGE_TTL_SECONDS: int = int(os.getenv("WEBAUTHN_CHALLENGE_TTL_SECONDS", 300))

    # Google OAuth
    GOOGLE_CLIENT_ID: Optional[str] = os.getenv("GOOGLE_CLIENT_ID")

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


settings = Settings()
