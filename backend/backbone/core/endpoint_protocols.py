"""Boundary Protocols — contracts between the data-access core and the backing service.

Invariants:
    - Services NEVER import a concrete endpoint — dependency arrows point inward only
    - All IO toward the backing service goes through these Protocol types
    - Implementations provided by infrastructure via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, test fakes need no inheritance (ADR: ExMA anti-pattern)
    - Operations are zero-argument coroutine functions: the executor never needs to know
      what is being queried, only how to call it again
    - Channel lifecycle delivered through a synchronous state callback: mirrors the push
      transport, which reports SUBSCRIBED/CLOSED/CHANNEL_ERROR/TIMED_OUT asynchronously
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from backbone.core.domain_types import ChangePayload, ChannelSpec, ChannelState
from backbone.core.errors import ServiceError

T = TypeVar("T")

StateCallback = Callable[[ChannelState, BaseException | None], None]
ChangeCallback = Callable[[ChangePayload], Any]


@dataclass(frozen=True)
class ServiceResponse(Generic[T]):
    """Payload-or-error envelope for collaborators that report errors instead of raising."""
    data: T | None = None
    error: ServiceError | None = None


Operation = Callable[[], Awaitable[Any]]


class DataEndpoint(Protocol):
    """Request/response side of the backing service."""
    async def probe(self) -> None: ...


class Channel(Protocol):
    """One long-lived push subscription handle."""
    name: str

    async def subscribe(self, on_state: StateCallback) -> None: ...


class PushEndpoint(Protocol):
    """Change-feed side of the backing service."""
    def channel(
        self, name: str, spec: ChannelSpec, on_change: ChangeCallback,
    ) -> Channel: ...

    async def remove_channel(self, channel: Channel) -> None: ...


class UserNotifier(Protocol):
    """User-visible notices (terminal failures, recoveries)."""
    def show_error(self, message: str) -> None: ...

    def show_success(self, message: str) -> None: ...
