"""
Configuration management for the ticket dispatch service.

Uses Pydantic Settings for type-safe configuration.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    # Environment
    environment: str = "development"

    # Server (python -m dispatch.main or the ticket-dispatch script)
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./dispatch.db"

    # Redis (change events for other processes)
    redis_url: str = "redis://localhost:6379/0"
    redis_channel_prefix: str = "dispatch"

    # CORS
    cors_origins: str = "http://localhost:5173"

    # Ticket numbering resets at local midnight in this timezone
    timezone: str = "UTC"

    # Dispatch rules
    default_max_personal_queue_size: int = 10
    busy_threshold: int = 100  # Workload score at or above this is not assignable

    # Settle-and-retry after an availability change
    auto_assign_settle_attempts: int = 3
    auto_assign_settle_delay_seconds: float = 0.2

    # Rapid-repeat guard for availability toggles (slowapi/limits syntax)
    availability_toggle_rate_limit: str = "1 per 2 seconds"

    # Notifications
    notification_webhook_url: str | None = None  # Optional - POST target for notifications
    notification_timeout: float = 5.0

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
