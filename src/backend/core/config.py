"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a local .env file).
Trust & safety thresholds live here so they can be tuned per environment
without a deploy.
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "TrustGate"
    APP_ENV: str = "development"
    DEBUG: bool = False
    SECRET_KEY: str = ""  # Required - loaded from environment

    # Database - PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "trustgate"
    POSTGRES_PASSWORD: str = ""  # Required - loaded from environment
    POSTGRES_DB: str = "trustgate"
    DATABASE_URL_OVERRIDE: str | None = None
    DATABASE_ECHO: bool = False

    @field_validator("SECRET_KEY", "POSTGRES_PASSWORD")
    @classmethod
    def validate_required_secrets(cls, v: str, info: Any) -> str:
        """Validate that required secrets are set."""
        if not v:
            raise ValueError(f"{info.field_name} must be set in environment")
        return v

    @property
    def POSTGRES_URL(self) -> str:
        """Construct PostgreSQL connection URL with SSL required."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}?ssl=require"
        )

    @property
    def DATABASE_URL(self) -> str:
        """Connection URL actually used by the engine."""
        return self.DATABASE_URL_OVERRIDE or self.POSTGRES_URL

    # Authentication
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Shared secret for service-to-service calls (signup, messaging, discovery)
    INTERNAL_API_SECRET: str = "not-set"

    # CORS - stored as comma-separated string to avoid pydantic-settings JSON parsing issues
    CORS_ORIGINS: str = "http://localhost:8081"

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        import json

        try:
            return json.loads(self.CORS_ORIGINS)
        except json.JSONDecodeError:
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Liveness gate
    LIVENESS_CONSISTENCY_THRESHOLD: float = 0.80

    # Verification attempt limiter
    VERIFICATION_ATTEMPT_WINDOW_MINUTES: int = 60
    VERIFICATION_ATTEMPT_CEILING: int = 3
    VERIFICATION_BREACH_LOOKBACK_HOURS: int = 24
    VERIFICATION_BREACH_WINDOWS_FOR_FLAG: int = 2

    # Behavior detector
    FLAG_COOLDOWN_HOURS: int = 24
    RAPID_SWIPE_WINDOW_MINUTES: int = 10
    RAPID_SWIPE_THRESHOLD: int = 100
    MASS_MESSAGE_WINDOW_MINUTES: int = 60
    MASS_MESSAGE_THRESHOLD: int = 50
    MULTI_REPORTER_WINDOW_DAYS: int = 30
    MULTI_REPORTER_THRESHOLD: int = 3

    # Device / account correlator
    CORRELATION_LOOKBACK_HOURS: int = 72
    MULTI_ACCOUNT_LINK_THRESHOLD: int = 2
    RAPID_BINDING_WINDOW_HOURS: int = 24
    RAPID_BINDING_THRESHOLD: int = 3

    # Trust score engine
    TRUST_SCORE_BASELINE: int = 50
    TRUST_SCORE_SUSPICIOUS_FLOOR: int = 30
    TRUST_SCORE_HARD_MINIMUM: int = 15
    FLAG_ACTIVE_DAYS: int = 90

    # Manual review / retention
    REVIEW_SLA_HOURS: int = 48
    EVIDENCE_RETENTION_DAYS: int = 30

    # Background jobs
    ENABLE_BACKGROUND_JOBS: bool = True
    RETENTION_SWEEP_INTERVAL_MINUTES: int = 60
    SLA_SWEEP_INTERVAL_MINUTES: int = 15


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
