"""Configuration management for the URL shortener application.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Backend Selection
=================
::
    DATABASE_DSN set? ── yes ──► StorageBackend.SQL   (SQLURLStorage)
           │
           no
           ▼
    StorageBackend.FILE ──► FileURLStorage(FILE_STORAGE_PATH)

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    backend = settings.storage_backend

**Step 3 — Override for tests**::
    settings = Settings(FILE_STORAGE_PATH=str(tmp_path / "urls.json"))

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- A non-empty DATABASE_DSN selects the relational backend, otherwise the
  JSON-lines file at FILE_STORAGE_PATH is used.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.enums import StorageBackend


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # HTTP surface
    SERVER_ADDRESS: str = "localhost:8080"
    BASE_URL: str = "http://localhost:8080"

    # Relational backend; leave empty to use the file backend
    DATABASE_DSN: str = ""
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # File backend
    FILE_STORAGE_PATH: str = "url_storage.json"

    # Owner cookie
    SECRET_KEY: str = "change-me"
    COOKIE_NAME: str = "user"

    # Short URL config
    SHORT_CODE_LENGTH: int = 8

    # Storage operations and the deletion pipeline
    STORAGE_TIMEOUT_SECONDS: float = 5.0
    DELETE_WORKERS: int = 8

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def storage_backend(self) -> StorageBackend:
        if self.DATABASE_DSN:
            return StorageBackend.SQL
        return StorageBackend.FILE


@lru_cache()
def get_settings() -> Settings:
    return Settings()
