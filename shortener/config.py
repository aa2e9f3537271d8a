"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Override from the environment**::
    export DATABASE_URL="postgresql+asyncpg://user:pass@db:5432/shortener"
    export URL_LOCK_BACKEND=redis

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- The default database is a local SQLite file under ./data.
- URL_LOCK_BACKEND selects the per-URL exclusion lock: "local" serialises
  shortens inside one process, "redis" across every process sharing REDIS_URL.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["LockBackend", "Settings", "get_settings"]

from enum import StrEnum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LockBackend(StrEnum):
    """Where the per-URL shorten lock lives."""

    LOCAL = "local"
    REDIS = "redis"


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Persistence
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/urls.db"
    DATABASE_ECHO: bool = False

    # Redis (only used when URL_LOCK_BACKEND=redis)
    REDIS_URL: str = "redis://redis:6379/0"

    # Short key allocation
    SHORT_KEY_LENGTH: int = Field(7, ge=1)
    SHORT_KEY_ALPHABET: str = Field(
        "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789",
        min_length=2,
    )
    MAX_ALLOCATION_ATTEMPTS: int = Field(10, ge=1)

    # Caller deadlines, in seconds
    SHORTEN_TIMEOUT_SECONDS: float = Field(5.0, gt=0)
    RESOLVE_TIMEOUT_SECONDS: float = Field(2.0, gt=0)

    # Per-URL exclusion lock
    URL_LOCK_BACKEND: LockBackend = LockBackend.LOCAL
    URL_LOCK_STRIPES: int = Field(256, ge=1)
    URL_LOCK_TTL_SECONDS: int = Field(10, ge=1)
    URL_LOCK_RETRY_DELAY_SECONDS: float = Field(0.02, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
