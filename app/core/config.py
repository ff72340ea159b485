"""
Application configuration settings
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """
    # Project metadata
    PROJECT_NAME: str = "Tiered Rate Limiter"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    # Database - SQLite by default, PostgreSQL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./rate_limits.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 2
    REDIS_PASSWORD: Optional[str] = None

    # Where window counters live: "database" or "redis"
    USAGE_COUNTER_BACKEND: str = "database"

    # Rate limiting policy
    RATE_LIMIT_FAIL_OPEN: bool = True  # allow requests when the store is down
    RATE_LIMIT_TIMEOUT_MS: int = 250
    TIER_CACHE_TTL_SECONDS: int = 5
    TIER_CACHE_MAX_ENTRIES: int = 10000

    # Retention
    USAGE_RETENTION_DAYS: int = 7
    VIOLATION_RETENTION_DAYS: int = 30

    # Demo sessions
    DEMO_SESSION_TTL_DAYS: int = 7
    DEMO_DEFAULT_CREDITS: int = 5
    DEMO_REFERRAL_CREDITS: int = 1
    REFERRAL_CODE_MAX_ATTEMPTS: int = 5
    REFERRAL_DUPLICATE_WINDOW_HOURS: int = 24

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    RETENTION_SWEEP_INTERVAL_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
