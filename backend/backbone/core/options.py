"""Component Options — validated, immutable configuration records for monitor, executor and subscriptions.

Invariants:
    - All delays and timeouts in milliseconds, all must be >= 0 (interval and timeout > 0)
    - Invalid values raise ConfigurationError at construction (fatal, never deferred)
    - Options are frozen; per-call overrides go through dataclasses.replace

Design Decisions:
    - Dataclasses over pydantic here: core stays free of IO/framework coupling;
      Settings (pydantic-settings) feeds these at the composition root
"""

from dataclasses import dataclass, field
from typing import Any, Callable

from backbone.core.domain_types import ChangeEvent, ChannelSpec
from backbone.core.errors import ConfigurationError


def _require_non_negative(**values: int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ConfigurationError(f"{name} must be >= 0 (got {value})")


def _require_positive(**values: int) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ConfigurationError(f"{name} must be > 0 (got {value})")


@dataclass(frozen=True)
class MonitorConfig:
    """Connection Monitor knobs."""
    health_check_interval_ms: int = 30_000
    health_check_timeout_ms: int = 5_000
    auto_reconnect: bool = True
    max_reconnect_attempts: int = 5
    reconnect_delay_ms: int = 2_000

    def __post_init__(self):
        _require_positive(
            health_check_interval_ms=self.health_check_interval_ms,
            health_check_timeout_ms=self.health_check_timeout_ms,
        )
        _require_non_negative(
            max_reconnect_attempts=self.max_reconnect_attempts,
            reconnect_delay_ms=self.reconnect_delay_ms,
        )


@dataclass(frozen=True)
class QueryOptions:
    """Per-call Query Executor behaviour."""
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 1_000
    show_error_to_user: bool = True
    log_error: bool = True
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _require_non_negative(
            max_retries=self.max_retries, retry_delay_ms=self.retry_delay_ms,
        )


@dataclass(frozen=True)
class SubscriptionOptions:
    """What to subscribe to and how to recover it."""
    table: str
    event: ChangeEvent = ChangeEvent.ALL
    schema: str = "public"
    filter: str | None = None
    on_error: Callable[[BaseException], None] | None = None
    auto_reconnect: bool = True
    max_reconnect_attempts: int = 5
    reconnect_delay_ms: int = 2_000

    def __post_init__(self):
        if not self.table:
            raise ConfigurationError("Subscription table must not be empty")
        _require_non_negative(
            max_reconnect_attempts=self.max_reconnect_attempts,
            reconnect_delay_ms=self.reconnect_delay_ms,
        )

    @property
    def channel_spec(self) -> ChannelSpec:
        return ChannelSpec(
            table=self.table, schema=self.schema,
            event=self.event, filter=self.filter,
        )
