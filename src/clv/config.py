"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./clv.db"

    # Redis (local fallback cache of recent records and auth events)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Customer API sink (the HTTP side of the dual-sink publisher)
    CUSTOMER_API_BASE_URL: str = "http://localhost:8000"
    CUSTOMER_API_TIMEOUT: float = 10.0

    # Sync pipeline
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: float = 5 * 60
    ACTIVITY_FLUSH_INTERVAL_SECONDS: float = 30
    ACTIVITY_QUEUE_HIGH_WATER_MARK: int = 10
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BASE_DELAY_SECONDS: float = 30
    SYNC_INITIAL_DELAY_SECONDS: float = 2
    CONNECTIVITY_CHECK_INTERVAL_SECONDS: float = 15
    LOCAL_CACHE_LIMIT: int = 100

    # Which CLV formula family the synthesizer uses: "activity_tracking" or "data_sync"
    VALUE_FORMULA: str = "activity_tracking"

    # Auth event logging
    AUTH_LOG_MAX_RETRIES: int = 3
    AUTH_LOG_RETRY_DELAY_SECONDS: float = 2

    def get_cors_origins(self) -> list[str]:
        """Return the configured CORS origins as a list."""
        if self.CORS_ALLOWED_ORIGINS == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
