"""Client configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Backend location - shared with the web frontend
    api_base_url: str = Field(
        default="http://localhost:5000/api",
        validation_alias="API_BASE_URL",
    )

    # Per-request timeout in seconds (each retry attempt gets its own budget)
    request_timeout: float = Field(default=10.0, gt=0, validation_alias="API_TIMEOUT")

    # Retry policy for idempotent calls
    retry_attempts: int = Field(default=3, ge=1, validation_alias="API_RETRY_ATTEMPTS")
    retry_backoff_base: float = Field(
        default=1.0, ge=0, validation_alias="API_RETRY_BACKOFF",
    )

    # Where the session (token + identity) is persisted. Empty = in-memory only.
    session_file: str = Field(default="", validation_alias="SESSION_FILE")

    # Sent as X-Request-Source so the backend can tell clients apart
    request_source: str = Field(
        default="python-client", validation_alias="API_REQUEST_SOURCE",
    )

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Endpoint paths start with '/', so the base URL must not end with one."""
        return value.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
