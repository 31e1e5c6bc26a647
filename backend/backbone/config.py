"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All credentials come from environment variables (never hardcoded)
    - DATABASE_URL is required: a missing or empty value fails at startup
    - get_settings() is cached (lru_cache) — single instance per process
    - All durations in milliseconds

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for every tuning knob; only the endpoint credential is mandatory
    - Settings project into the core option dataclasses instead of being passed around whole
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backbone.core.options import MonitorConfig, QueryOptions, SubscriptionOptions


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Backing service
    database_url: str

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted providers hand out postgresql:// but SQLAlchemy async needs postgresql+asyncpg://."""
        if isinstance(v, str) and not v.strip():
            raise ValueError("DATABASE_URL must not be empty")
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = Field(default=20, gt=0)
    database_max_overflow: int = Field(default=10, ge=0)

    # Realtime (LISTEN/NOTIFY) — defaults to the database URL without the driver suffix
    realtime_dsn: str | None = None
    realtime_connect_timeout_ms: int = Field(default=10_000, gt=0)

    # Connection monitor
    health_check_interval_ms: int = Field(default=30_000, gt=0)
    health_check_timeout_ms: int = Field(default=5_000, gt=0)
    auto_reconnect: bool = True
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_ms: int = Field(default=2_000, ge=0)

    # Query executor
    retry_on_failure: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1_000, ge=0)
    connecting_grace_ms: int = Field(default=2_000, ge=0)

    # Subscriptions
    subscription_max_reconnect_attempts: int = Field(default=5, ge=0)
    subscription_reconnect_delay_ms: int = Field(default=2_000, ge=0)

    # User notices
    notice_history_size: int = Field(default=50, gt=0)

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def listener_dsn(self) -> str:
        """Plain libpq DSN for asyncpg listener connections."""
        if self.realtime_dsn:
            return self.realtime_dsn
        return self.database_url.replace("postgresql+asyncpg://", "postgresql://", 1)

    def monitor_config(self) -> MonitorConfig:
        return MonitorConfig(
            health_check_interval_ms=self.health_check_interval_ms,
            health_check_timeout_ms=self.health_check_timeout_ms,
            auto_reconnect=self.auto_reconnect,
            max_reconnect_attempts=self.max_reconnect_attempts,
            reconnect_delay_ms=self.reconnect_delay_ms,
        )

    def query_options(self) -> QueryOptions:
        return QueryOptions(
            retry_on_failure=self.retry_on_failure,
            max_retries=self.max_retries,
            retry_delay_ms=self.retry_delay_ms,
        )

    def subscription_options(self, table: str, **overrides) -> SubscriptionOptions:
        """Subscription options for a table with the configured reconnection policy."""
        values = {
            "max_reconnect_attempts": self.subscription_max_reconnect_attempts,
            "reconnect_delay_ms": self.subscription_reconnect_delay_ms,
            **overrides,
        }
        return SubscriptionOptions(table=table, **values)


@lru_cache
def get_settings() -> Settings:
    return Settings()
