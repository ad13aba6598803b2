"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables or a local .env file.
"""

from enum import Enum
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FailurePolicy(str, Enum):
    """What the vote gate does when its own infrastructure fails."""

    OPEN = "open"  # permit the vote
    CLOSED = "closed"  # deny the vote


class IdentityWindow(str, Enum):
    """Rotation window of the privacy-preserving client identity hash."""

    DAY = "1d"
    SESSION = "session"
    NONE = "none"


class StorageBackend(str, Enum):
    """Datastore behind the repositories."""

    POSTGRES = "postgres"
    MEMORY = "memory"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "PollGuard"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Database - PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "pollguard"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "pollguard"
    POSTGRES_SSL: bool = True

    @property
    def POSTGRES_URL(self) -> str:
        """Construct PostgreSQL connection URL."""
        url = (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )
        return f"{url}?ssl=require" if self.POSTGRES_SSL else url

    # Storage backend for vote logs, settings and audit tables
    FRAUD_STORAGE_BACKEND: StorageBackend = StorageBackend.POSTGRES

    # Vote gate behaviour
    FRAUD_FAILURE_POLICY: FailurePolicy = FailurePolicy.OPEN
    FRAUD_IDENTITY_WINDOW: IdentityWindow = IdentityWindow.DAY

    # Risk thresholds (0-100)
    CAPTCHA_RISK_THRESHOLD: int = 50
    BLOCK_RISK_THRESHOLD: int = 80
    RISK_FALLBACK_SCORE: int = 30

    # CAPTCHA tokens
    CAPTCHA_MAX_AGE_SECONDS: int = 300
    # When set, tokens must be HMAC-signed and are single-use
    CAPTCHA_SIGNING_KEY: str | None = None

    # Cloudflare Turnstile, checked before a signed token is issued
    TURNSTILE_SECRET_KEY: str | None = None
    TURNSTILE_VERIFY_URL: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

    # Session cookie carrying the per-browser-session id
    SESSION_COOKIE_NAME: str = "pg_session"

    # CORS - stored as comma-separated string to avoid pydantic-settings JSON parsing issues
    CORS_ORIGINS: str = "http://localhost:3000"

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        """Risk thresholds must be ordered and inside the 0-100 scale."""
        for name in ("CAPTCHA_RISK_THRESHOLD", "BLOCK_RISK_THRESHOLD", "RISK_FALLBACK_SCORE"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100")
        if self.CAPTCHA_RISK_THRESHOLD >= self.BLOCK_RISK_THRESHOLD:
            raise ValueError("CAPTCHA_RISK_THRESHOLD must be lower than BLOCK_RISK_THRESHOLD")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        import json

        try:
            return json.loads(self.CORS_ORIGINS)
        except json.JSONDecodeError:
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
