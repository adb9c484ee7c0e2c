"""Application configuration."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Cadence Scheduler"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./cadence.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker + tick throttle locks)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Trigger evaluator
    TRIGGER_TICK_SECONDS: int = 300
    TRIGGER_TICK_LOCK_SECONDS: int = 180
    # Must stay below TRIGGER_TICK_SECONDS or a jittery tick skips a new period
    DATA_CONDITION_DEBOUNCE_SECONDS: int = 240
    INVALID_CRON_FALLBACK_HOURS: int = 24
    TRIGGER_BATCH_SIZE: int = 500

    # Reminder scheduler
    REMINDER_TICK_SECONDS: int = 300
    REMINDER_CLAIM_HOLD_SECONDS: int = 300
    REMINDER_DEFAULT_FREQUENCY_HOURS: int = 72
    REMINDER_BATCH_SIZE: int = 500

    # Upper bound for any single collaborator call (evaluate, render, send)
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0

    # External condition evaluation service
    CONDITION_SERVICE_URL: str = ""
    CONDITION_SERVICE_TOKEN: str = ""

    # SMTP delivery
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_ADDRESS: str = "reminders@localhost"
    SMTP_USE_TLS: bool = True

    # Ops endpoints that run a tick on demand (dev / support only)
    MANUAL_TICKS_ENABLED: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @model_validator(mode="after")
    def _check_debounce_window(self) -> "Settings":
        if self.DATA_CONDITION_DEBOUNCE_SECONDS >= self.TRIGGER_TICK_SECONDS:
            raise ValueError(
                "DATA_CONDITION_DEBOUNCE_SECONDS must be strictly less than "
                "TRIGGER_TICK_SECONDS"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def smtp_config(self) -> dict:
        """SMTP settings in the shape EmailDelivery expects."""
        return {
            "smtp_host": self.SMTP_HOST,
            "smtp_port": self.SMTP_PORT,
            "smtp_user": self.SMTP_USER,
            "smtp_password": self.SMTP_PASSWORD,
            "from_address": self.SMTP_FROM_ADDRESS,
            "use_tls": self.SMTP_USE_TLS,
        }

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
