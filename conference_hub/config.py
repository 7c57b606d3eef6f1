"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./conference_hub.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret shared with the identity provider")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    service_api_key: str = Field(default="service-key", description="API key for service-to-service calls")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    log_dir: str = Field(default="logs", description="Directory for the per-service audit logs")

    slot_cache_ttl: int = Field(default=30, description="TTL (s) for cached slot availability results")
    deletion_cutoff_hours: int = Field(
        default=24,
        description="Confirmed bookings cannot be deleted this many hours before they start",
    )

    event_publishing_enabled: bool = Field(default=False, description="Publish booking events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ hostname")
    bookings_queue: str = Field(default="bookings", description="Durable queue for booking events")

    rooms_service_port: int = 8002
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
