"""
Application configuration using Pydantic Settings.
"""

import re
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./card_ledger.db"

    # Redis (events, maintenance queue, rate limits)
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 5000

    # CORS (issuing-authority and merchant dashboards)
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:4000"]

    # Security
    JWT_SECRET: str = "change_me_in_production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24
    AUTO_CREATE_DB_SCHEMA: bool = True

    # Calendar day and scheduled maintenance
    BUSINESS_TIMEZONE: str = "Asia/Kolkata"
    DAILY_RESET_TIME: str = "00:45"
    RETENTION_PURGE_TIME: str = "02:11"
    RETENTION_DAYS: int = Field(default=183, ge=1)
    MAINTENANCE_SCHEDULER_ENABLED: bool = True
    RESET_STALE_LIMITS_ON_STARTUP: bool = True

    # Ledger
    DEFAULT_DAILY_LIMIT: Optional[Decimal] = None
    CARD_NUMBER_DIGITS: int = 5
    CARD_NUMBER_MAX_ATTEMPTS: int = 32
    LEDGER_TX_TIMEOUT_SECONDS: float = 10.0

    # Request quotas (per store session, per window)
    DEBIT_RATE_LIMIT_PER_MINUTE: int = Field(default=120, ge=1)
    SETTLEMENT_REQUEST_RATE_LIMIT_PER_HOUR: int = Field(default=30, ge=1)

    # Outbound notifications
    EVENTS_ENABLED: bool = True
    EVENT_CHANNEL_PREFIX: str = "store_"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @field_validator("DAILY_RESET_TIME", "RETENTION_PURGE_TIME")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        value = (value or "").strip()
        if not _CLOCK_PATTERN.match(value):
            raise ValueError("clock times must use 24h HH:MM format")
        return value

    @field_validator("CARD_NUMBER_DIGITS")
    @classmethod
    def _validate_digits(cls, value: int) -> int:
        if value < 2 or value > 9:
            raise ValueError("CARD_NUMBER_DIGITS must be between 2 and 9")
        return value


settings = Settings()


def validate_security_settings() -> None:
    """Fail fast when insecure default secrets are still configured."""
    insecure_values = {
        "",
        "change_me_in_production",
        "your-secret-key",
    }
    jwt_secret = (settings.JWT_SECRET or "").strip()

    if jwt_secret in insecure_values or len(jwt_secret) < 24:
        raise ValueError("JWT_SECRET is insecure. Configure a strong non-default secret (>=24 chars).")
    if settings.CARD_NUMBER_MAX_ATTEMPTS < 1:
        raise ValueError("CARD_NUMBER_MAX_ATTEMPTS must be at least 1.")
