# storefront/core/config.py
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars in production (.env):
      - DATABASE_URL (PostgreSQL connection string)
      - JWT_SECRET (HS256 signing secret shared with the identity provider)

    Everything else has a sensible default for local development.
    """

    PROJECT_NAME: str = "Storefront API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./storefront.db"
    DATABASE_SSL_REQUIRED: bool = False
    DATABASE_ECHO: bool = False

    # JWT verification (tokens are issued by the identity provider)
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Cart lifetime
    USER_CART_TTL_DAYS: int = 30
    GUEST_CART_TTL_DAYS: int = 7
    SWEEP_EXPIRED_CARTS_ON_STARTUP: bool = True

    # Orders
    CURRENCY: str = "USD"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
