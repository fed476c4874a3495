"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. sqlite:///./workload.db for local runs)
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="study_dashboard")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    DB_SCHEMA: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Workload engine
    WORKLOAD_METRICS_LOOKBACK_DAYS: int = Field(default=28, ge=1, le=365)
    WORKLOAD_SNAPSHOT_TTL_MINUTES: int = Field(default=5, ge=1)
    # Scheduled refreshes warm the cache until the next run
    WORKLOAD_CRON_TTL_MINUTES: int = Field(default=30, ge=1)
    # Threads used for the independent base reads (weights + raw score views + assignments + metrics)
    WORKLOAD_READ_CONCURRENCY: int = Field(default=6, ge=1, le=16)
    WORKLOAD_TREND_LOOKBACK_DAYS: int = Field(default=56, ge=7)
    WORKLOAD_BREAKDOWN_LOOKBACK_WEEKS: int = Field(default=12, ge=1)
    # auto | v2 (meeting_hours + study counts) | v1 (legacy admin_hours only)
    COORDINATOR_METRICS_SCHEMA_VERSION: str = Field(default="auto", pattern="^(auto|v1|v2)$")

    # Shared secret for the scheduled full refresh endpoint
    CRON_SECRET: Optional[str] = Field(default=None)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
