"""Application configuration using pydantic-settings."""
from typing import List, Optional

from pydantic import AliasChoices, Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_parse_none_str="none",
    )

    # Key-value store configuration
    redis_url: Optional[RedisDsn] = Field(
        default="redis://localhost:6379/0",
        description="Redis connection string for the metering key-value store (unset = store binding absent)",
    )
    store_socket_timeout: float = Field(default=5.0, description="Socket timeout for store round trips in seconds")

    # Application Configuration
    app_env: str = Field(default="development", description="Application environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=True, description="Enable debug mode")

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins",
    )

    # Usage counters
    usage_rolling_window: bool = Field(
        default=False,
        validation_alias=AliasChoices("usage_rolling_window", "usage_kv_v2"),
        description="Write usage counters with the rolling-window key layout instead of the legacy monthly one",
    )
    rolling_window_seconds: int = Field(default=86400, gt=0, description="Rolling usage window length in seconds")
    guest_daily_limits: dict[str, int] = Field(
        default_factory=dict,
        description="Per-feature daily limit overrides for guests, e.g. {\"prompt\": 5}",
    )
    user_daily_limits: dict[str, int] = Field(
        default_factory=dict,
        description="Per-feature daily limit overrides for signed-in users",
    )

    # Credit administration
    admin_credit_adjust_enabled: bool = Field(
        default=False,
        description="Allow manual credit deductions in production",
    )


# Global settings instance
settings = Settings()
