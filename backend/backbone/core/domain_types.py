"""Domain Types — enums and value records shared by the monitor, executor and subscription manager.

Invariants:
    - All valid states encoded as Enums — no raw string matching
    - HealthCheckResult and ChangePayload are immutable snapshots
    - ChannelState values match the push transport's lifecycle vocabulary verbatim

Design Decisions:
    - str Enums: serialize to JSON without custom encoders (ADR: diagnostics routes return them)
    - NewType for SubscriptionId: zero runtime cost, full type-checker support
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NewType


# ─── Identity Types ──────────────────────────────────────────────

SubscriptionId = NewType("SubscriptionId", str)


# ─── Enums ───────────────────────────────────────────────────────

class ConnectionStatus(str, Enum):
    """Authoritative belief about backing-service reachability."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ChannelState(str, Enum):
    """Lifecycle events emitted by a push channel."""
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


class ChangeEvent(str, Enum):
    """Row-change event filter for a subscription."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"

    def matches(self, event_type: str) -> bool:
        return self is ChangeEvent.ALL or self.value == event_type.upper()


class SubscriptionState(str, Enum):
    """Per-subscription recovery state."""
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    PERMANENTLY_INACTIVE = "permanently_inactive"


# ─── Value Records ───────────────────────────────────────────────

@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of a single health probe."""
    healthy: bool
    latency_ms: int | None = None
    error: BaseException | None = None
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "latency_ms": self.latency_ms,
            "error": str(self.error) if self.error else None,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class ChangePayload:
    """Row change delivered by a channel."""
    event_type: str
    table: str
    schema: str = "public"
    old: dict[str, Any] = field(default_factory=dict)
    new: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChannelSpec:
    """What a channel listens to: schema.table, event filter and optional row filter."""
    table: str
    schema: str = "public"
    event: ChangeEvent = ChangeEvent.ALL
    filter: str | None = None


@dataclass(frozen=True)
class SubscriptionStatus:
    """Read-only view of one subscription record."""
    exists: bool
    active: bool
    reconnect_attempts: int
    state: SubscriptionState

    def to_dict(self) -> dict:
        return {
            "exists": self.exists,
            "active": self.active,
            "reconnect_attempts": self.reconnect_attempts,
            "state": self.state.value,
        }
