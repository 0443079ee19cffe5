"""Environment-driven settings for the shortener.

Settings Groups
===============
::
    Settings
    ├─ app        APP_NAME, APP_ENV, BASE_URL, LOG_LEVEL, CORS_ORIGINS
    ├─ database   DATABASE_URL, DATABASE_POOL_SIZE, DATABASE_MAX_OVERFLOW
    ├─ redis      REDIS_URL, REDIS_KEY_PREFIX
    ├─ links      LINK_STORE_BACKEND, STORAGE_TIMEOUT_SECONDS,
    │             SHORT_CODE_LENGTH, CODE_ALLOCATION_MAX_ATTEMPTS
    ├─ tokens     JWT_SECRET_KEY, JWT_ALGORITHM, JWT_ISSUER, JWT_AUDIENCE,
    │             ACCESS_TOKEN_EXPIRE_MINUTES
    └─ identity   ADMIN_EMAILS, FIRST_USER_IS_ADMIN, PASSWORD_MIN_LENGTH

Values come from the process environment, then ``.env``, then the defaults
below. Names are case-sensitive. List values are JSON arrays::

    export LINK_STORE_BACKEND=redis
    export ADMIN_EMAILS='["ops@example.com"]'

``get_settings()`` builds the object once per process. Tests set the
environment before the first import.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.enums import LinkStoreBackend


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (sqlite+aiosqlite works for local runs and tests)
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_KEY_PREFIX: str = "shortener"

    # Link storage
    LINK_STORE_BACKEND: LinkStoreBackend = LinkStoreBackend.SQL
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # Short code allocation
    SHORT_CODE_LENGTH: int = 6
    CODE_ALLOCATION_MAX_ATTEMPTS: int = 5

    # Tokens
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "url-shortener"
    JWT_AUDIENCE: str = "url-shortener-clients"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Identity policy
    ADMIN_EMAILS: list[str] = []
    FIRST_USER_IS_ADMIN: bool = False
    PASSWORD_MIN_LENGTH: int = 6

    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
