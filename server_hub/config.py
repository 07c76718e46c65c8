"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    secret_key: str = Field(
        description="Secret key for signing JWT tokens", min_length=1
    )
    access_token_expire_minutes: int = Field(
        default=60,
        description="Number of minutes before access tokens expire",
        gt=0,
    )
    app_timezone: str | None = Field(
        default=None,
        description="IANA timezone or UTC offset used for timestamps",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the API from a browser",
    )
    push_attempts: int = Field(
        default=3,
        description="Number of attempts made to push a notification to one connection",
        ge=1,
    )
    push_backoff_base_seconds: float = Field(
        default=0.2,
        description="Base delay of the exponential backoff between push attempts",
        ge=0,
    )
    push_timeout_seconds: float = Field(
        default=2.0,
        description="Timeout applied to every single push attempt",
        gt=0,
    )
    connection_idle_timeout_seconds: float = Field(
        default=120.0,
        description="Seconds without client activity before a connection is dropped",
        gt=0,
    )
    replay_page_size: int = Field(
        default=100,
        description="Maximum number of records fetched per replay page on reconnect",
        gt=0,
    )
    notification_retention_days: int = Field(
        default=90,
        description="Age after which read notifications are archived and no longer replayed",
        gt=0,
    )

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "Settings":
        if self.push_timeout_seconds >= self.connection_idle_timeout_seconds:
            raise ValueError(
                "PUSH_TIMEOUT_SECONDS must be lower than CONNECTION_IDLE_TIMEOUT_SECONDS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
