"""Configuration for the shortlink service.

All tunables live on one pydantic-settings model, read from the environment
(and an optional .env file) once per process.

Settings Groups
===============
::
    Settings
    ├─ app          APP_NAME, APP_ENV, BASE_URL, LOG_LEVEL
    ├─ storage      DATABASE_URL, REDIS_URL, REDIS_SOCKET_TIMEOUT_SECONDS
    ├─ short codes  SHORT_CODE_LENGTH, SHORT_CODE_MAX_ATTEMPTS
    ├─ cache        CACHE_KEY_PREFIX, CACHE_DEFAULT_TTL_SECONDS,
    │               CACHE_POPULARITY_BONUS_SECONDS, CACHE_MAX_BONUS_SECONDS,
    │               CACHE_WARMUP_ENABLED, CACHE_WARMUP_LIMIT
    ├─ clicks       CLICK_FLUSH_INTERVAL_MS, CLICK_FLUSH_THRESHOLD,
    │               CLICK_FLUSH_MAX_ATTEMPTS, CLICK_FLUSH_BACKOFF_MS
    ├─ dispatch     NOTIFY_QUEUE_SIZE, NOTIFY_WORKERS, NOTIFY_BACKPRESSURE_POLICY
    └─ shutdown     SHUTDOWN_GRACE_SECONDS

How to Use
===========
**Step 1 — Read the process settings**::
    from shortlink.config import get_settings
    settings = get_settings()

**Step 2 — Build explicit settings in tests**::
    settings = Settings(CLICK_FLUSH_INTERVAL_MS=50, CLICK_FLUSH_BACKOFF_MS=1)

Key Behaviours
===============
- get_settings() is memoised, so environment changes after the first call
  are not picked up.
- Variable names are case-sensitive.
- Cache TTL policy: default TTL plus a popularity bonus capped at
  CACHE_MAX_BONUS_SECONDS.
- Click flushing fires on CLICK_FLUSH_INTERVAL_MS or on CLICK_FLUSH_THRESHOLD
  distinct buffered codes, whichever comes first.

Classes:
    Settings:  Every configuration value with its default.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortlink.enums import BackpressurePolicy


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 0.5

    # Short code generation
    SHORT_CODE_LENGTH: int = 8
    SHORT_CODE_MAX_ATTEMPTS: int = 10

    # Read-through cache TTL policy
    CACHE_KEY_PREFIX: str = "url"
    CACHE_DEFAULT_TTL_SECONDS: int = 3600
    CACHE_POPULARITY_BONUS_SECONDS: int = 10
    CACHE_MAX_BONUS_SECONDS: int = 86400
    CACHE_WARMUP_ENABLED: bool = True
    CACHE_WARMUP_LIMIT: int = 1000

    # Click aggregation
    CLICK_FLUSH_INTERVAL_MS: int = 1000
    CLICK_FLUSH_THRESHOLD: int = 50
    CLICK_FLUSH_MAX_ATTEMPTS: int = 5
    CLICK_FLUSH_BACKOFF_MS: int = 2000

    # Access notification queue
    NOTIFY_QUEUE_SIZE: int = 10000
    NOTIFY_WORKERS: int = 4
    NOTIFY_BACKPRESSURE_POLICY: BackpressurePolicy = BackpressurePolicy.DROP_NEWEST

    # Bounded wait for the final flush on shutdown
    SHUTDOWN_GRACE_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
