"""Configuration management using pydantic-settings."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class ApiSettings(BaseSettings):
    """Backend HTTP configuration."""

    model_config = SettingsConfigDict(env_prefix="SALON_API_", case_sensitive=False)

    base_url: str = Field(
        default="http://localhost:3000/api", description="Backend base URL"
    )
    timeout: float = Field(
        default=30.0, description="Global request timeout in seconds"
    )


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="SALON_CACHE_", case_sensitive=False)

    ttl_seconds: float = Field(
        default=60.0, description="Freshness window for cached GET responses"
    )
    max_entries: int = Field(
        default=512, description="Maximum number of cached responses (LRU)"
    )


class StorageSettings(BaseSettings):
    """Persisted session storage configuration."""

    model_config = SettingsConfigDict(env_prefix="SALON_STORAGE_", case_sensitive=False)

    backend: str = Field(default="memory", description="Storage backend: memory or redis")
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    key_prefix: str = Field(default="salon:session:", description="Prefix for stored keys")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend name."""
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("backend must be 'memory' or 'redis'")
        return v


class BookingSettings(BaseSettings):
    """Booking rules that the product has not settled yet."""

    model_config = SettingsConfigDict(env_prefix="SALON_BOOKING_", case_sensitive=False)

    allow_reschedule_when_confirmed: bool = Field(
        default=True,
        description="Allow rescheduling an appointment that is already confirmed",
    )
    staff_actions_from_confirmed: bool = Field(
        default=False,
        description="Offer complete/cancel to staff for confirmed appointments",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="salon-booking", description="Application name")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Application environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    api: ApiSettings = Field(default_factory=ApiSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    booking: BookingSettings = Field(default_factory=BookingSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
