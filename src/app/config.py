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

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Redis (field metadata cache + fetch locks, shared by all instances)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "crm-sync"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Field metadata
    FIELDS_CACHE_TTL_SECONDS: int = 5 * 60

    # Bulk fetch
    FETCH_LOCK_TTL_SECONDS: int = 60 * 60 * 2
    FETCH_PAGE_SIZE: int = 200
    PARTIAL_FETCH_HORIZON_MINUTES: int = 90

    # CRM change notifications
    CRM_NOTIFY_URL_BASE: str = ""  # Public base URL the CRM posts notifications to
    NOTIFICATION_CHANNEL_BASE: int = 1000000268000
    NOTIFICATION_CHANNEL_EXPIRY_HOURS: int = 2

    # Outbound mapping: reject field types we cannot coerce instead of dropping them
    STRICT_OUTBOUND_TYPES: bool = False


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
