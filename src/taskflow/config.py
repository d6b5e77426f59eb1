"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: Path = Field(
        default_factory=lambda: Path("data/taskflow.db"),
        validation_alias=AliasChoices("TASKFLOW_DATABASE_PATH", "database_path"),
    )
    store_max_batch_ops: int = Field(
        default=500,
        ge=1,
        validation_alias=AliasChoices(
            "STORE_MAX_BATCH_OPS",
            "store_max_batch_ops",
        ),
    )

    # Scheduled reminders
    reminder_offsets_minutes: list[int] = Field(
        default_factory=lambda: [1440, 60, 15],
        validation_alias=AliasChoices(
            "REMINDER_OFFSETS_MINUTES",
            "reminder_offsets_minutes",
        ),
        description="Minutes before the due date at which reminders fire.",
    )

    # Delivery pipeline
    notification_batch_size: int = Field(
        default=100,
        ge=1,
        validation_alias=AliasChoices(
            "NOTIFICATION_BATCH_SIZE",
            "notification_batch_size",
        ),
    )
    notification_max_retries: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices(
            "NOTIFICATION_MAX_RETRIES",
            "notification_max_retries",
        ),
    )
    notification_retry_delay_minutes: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices(
            "NOTIFICATION_RETRY_DELAY_MINUTES",
            "notification_retry_delay_minutes",
        ),
    )
    delivery_concurrency: int = Field(
        default=1,
        ge=1,
        le=64,
        validation_alias=AliasChoices(
            "DELIVERY_CONCURRENCY",
            "delivery_concurrency",
        ),
        description="Notifications processed in parallel within one run.",
    )
    delivery_interval_minutes: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices(
            "DELIVERY_INTERVAL_MINUTES",
            "delivery_interval_minutes",
        ),
    )
    notification_retention_days: int = Field(
        default=30,
        ge=1,
        validation_alias=AliasChoices(
            "NOTIFICATION_RETENTION_DAYS",
            "notification_retention_days",
        ),
    )
    notification_cleanup_limit: int = Field(
        default=1000,
        ge=1,
        validation_alias=AliasChoices(
            "NOTIFICATION_CLEANUP_LIMIT",
            "notification_cleanup_limit",
        ),
    )

    # Push gateway
    push_endpoint_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("PUSH_ENDPOINT_URL", "push_endpoint_url"),
    )
    push_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PUSH_API_KEY", "push_api_key"),
    )
    push_send_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices(
            "PUSH_SEND_TIMEOUT_SECONDS",
            "push_send_timeout_seconds",
        ),
    )
    push_max_tokens_per_send: int = Field(
        default=500,
        ge=1,
        le=500,
        validation_alias=AliasChoices(
            "PUSH_MAX_TOKENS_PER_SEND",
            "push_max_tokens_per_send",
        ),
    )

    # Logging
    log_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices("LOG_SETTINGS_PATH", "log_settings_path"),
    )
    log_directory: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("LOG_DIRECTORY", "log_directory"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
