"""Application configuration settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Database
    database_url: str = "postgresql://localhost:5432/cardmarket"
    
    # Redis (Celery broker + rate limit counters)
    redis_url: str = "redis://localhost:6379/0"
    
    # Environment
    environment: str = "development"

    # Operator / cron access
    admin_secret: str = ""
    cron_secret: str = ""

    # Bearer tokens are issued by the identity provider; we only verify them.
    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    # Base URL used to build absolute links in emails and notifications
    app_base_url: str = "http://localhost:3000"

    # Transactional email provider
    email_api_url: str = ""
    email_api_key: str = ""
    email_from: str = "CardMarket <no-reply@cardmarket.local>"

    # Push notification provider (optional)
    push_api_url: str = ""
    push_api_key: str = ""

    # Offer submission rate limit (per user)
    offer_rate_limit: int = 10
    offer_rate_window_seconds: int = 60
    rate_limit_enabled: bool = True
    
    # Celery beat
    scheduler_enabled: bool = True
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
