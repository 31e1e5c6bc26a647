"""Subscription Manager — lifecycle and recovery of long-lived push channels.

Invariants:
    - At most one SubscriptionRecord per id; re-subscribing closes the old channel before
      the new one is opened
    - reconnect_attempts never exceeds max_reconnect_attempts; at the ceiling the record is
      PERMANENTLY_INACTIVE, its channel released, and the user told exactly once
    - Per-record reconnection is serialized by the record's lock; ids recover independently
    - Events from a channel that is no longer the record's current channel are ignored
    - Callback exceptions are logged and forwarded to on_error; they never escape the manager
      and never tear the subscription down
    - unsubscribe() cancels the pending reconnection before releasing the channel

Design Decisions:
    - Monitor injected, one status listener per manager: transition into CONNECTED triggers
      one reconnect per active record (bulk recovery); ERROR is only logged because channels
      report their own CHANNEL_ERROR/TIMED_OUT
    - Fixed reconnect_delay_ms per record, no jitter and no shared storm limiter
      (ADR: shipped behaviour; open question in DESIGN.md)
    - Reconnection timers are asyncio tasks so they can be cancelled with the record
"""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from backbone.core.domain_types import (
    ChangePayload, ChannelState, ConnectionStatus, SubscriptionState, SubscriptionStatus,
)
from backbone.core.endpoint_protocols import (
    Channel, ChangeCallback, PushEndpoint, StateCallback, UserNotifier,
)
from backbone.core.options import SubscriptionOptions
from backbone.services.connection_monitor import ConnectionMonitor
from backbone.services.task_utils import cancel_task

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]

RESUBSCRIBE_FAILED_NOTICE = (
    "Live updates could not be restored. Please reload the page."
)


@dataclass(eq=False)
class SubscriptionRecord:
    """Everything the manager tracks for one subscription id."""
    id: str
    options: SubscriptionOptions
    callback: ChangeCallback
    channel: Channel | None = None
    reconnect_attempts: int = 0
    active: bool = True
    state: SubscriptionState = SubscriptionState.ACTIVE
    terminal_reported: bool = False
    reconnect_task: asyncio.Task | None = None
    timer_armed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def channel_name(self) -> str:
        return f"{self.options.table}:{self.id}"


class SubscriptionManager:
    """Creates, tracks and recovers push subscriptions against the change feed."""

    def __init__(
        self,
        endpoint: PushEndpoint,
        monitor: ConnectionMonitor,
        notifier: UserNotifier,
        sleep: Sleep = asyncio.sleep,
    ):
        self._endpoint = endpoint
        self._monitor = monitor
        self._notifier = notifier
        self._sleep = sleep
        self._records: dict[str, SubscriptionRecord] = {}
        self._background: set[asyncio.Task] = set()
        self._releases: set[asyncio.Task] = set()
        self._last_status = monitor.status
        self._detach_monitor = monitor.on_status_change(self._on_status_change)

    # ─── Public API ──────────────────────────────────────────────

    async def subscribe(
        self, subscription_id: str, callback: ChangeCallback, options: SubscriptionOptions,
    ) -> Unsubscribe:
        """Open a channel for the id, replacing any existing one; returns an unsubscribe handle."""
        if subscription_id in self._records:
            logger.warning(
                "Subscription already exists, cleaning up old subscription",
                extra={"subscription_id": subscription_id},
            )
            await self.unsubscribe(subscription_id)

        logger.info(
            f"Creating subscription on {options.schema}.{options.table} ({options.event.value})",
            extra={"subscription_id": subscription_id},
        )
        record = SubscriptionRecord(subscription_id, options, callback)
        self._records[subscription_id] = record
        await self._open_channel(record)

        async def _unsubscribe() -> None:
            if self._records.get(subscription_id) is record:
                await self.unsubscribe(subscription_id)

        return _unsubscribe

    async def unsubscribe(self, subscription_id: str) -> None:
        """Tear down one subscription. Unknown ids are ignored."""
        record = self._records.pop(subscription_id, None)
        if record is None:
            return
        logger.info("Unsubscribing", extra={"subscription_id": subscription_id})
        record.active = False
        record.timer_armed = False
        await cancel_task(record.reconnect_task)
        record.reconnect_task = None
        channel, record.channel = record.channel, None
        await self._release(channel)

    async def unsubscribe_all(self) -> None:
        """Tear down every subscription (logout / shutdown)."""
        logger.info("Unsubscribing from all subscriptions")
        await asyncio.gather(*(self.unsubscribe(i) for i in list(self._records)))

    async def cleanup(self) -> None:
        """Unsubscribe everything and detach from the connection monitor."""
        logger.info("Cleaning up subscription manager")
        await self.unsubscribe_all()
        self._detach_monitor()
        # releases finish rather than being cut off mid-removal
        await asyncio.gather(*self._releases)
        for task in list(self._background):
            await cancel_task(task)
        self._background.clear()

    @asynccontextmanager
    async def subscription(
        self, subscription_id: str, callback: ChangeCallback, options: SubscriptionOptions,
    ) -> AsyncIterator[str]:
        """Scope a subscription to an `async with` block."""
        unsubscribe = await self.subscribe(subscription_id, callback, options)
        try:
            yield subscription_id
        finally:
            await unsubscribe()

    def get_active_subscription_count(self) -> int:
        return sum(1 for r in self._records.values() if r.active)

    def get_subscription_status(self, subscription_id: str) -> SubscriptionStatus | None:
        record = self._records.get(subscription_id)
        if record is None:
            return None
        return SubscriptionStatus(
            exists=True,
            active=record.active,
            reconnect_attempts=record.reconnect_attempts,
            state=record.state,
        )

    # ─── Channel lifecycle ───────────────────────────────────────

    async def _open_channel(self, record: SubscriptionRecord) -> None:
        channel = self._endpoint.channel(
            record.channel_name,
            record.options.channel_spec,
            self._change_handler(record),
        )
        record.channel = channel
        try:
            await channel.subscribe(self._state_handler(record, channel))
        except Exception as e:
            logger.error(
                f"Channel subscribe failed: {e}",
                extra={"subscription_id": record.id},
            )
            self._handle_state(record, ChannelState.CHANNEL_ERROR, e)

    async def _release(self, channel: Channel | None) -> None:
        if channel is None:
            return
        try:
            await self._endpoint.remove_channel(channel)
        except Exception as e:
            logger.warning(f"Failed to remove channel {channel.name}: {e}")

    def _state_handler(self, record: SubscriptionRecord, channel: Channel) -> StateCallback:
        def _on_state(state: ChannelState, error: BaseException | None = None) -> None:
            if record.channel is not channel or self._records.get(record.id) is not record:
                logger.debug(
                    f"Ignoring {state.value} from stale channel {channel.name}",
                    extra={"subscription_id": record.id},
                )
                return
            self._handle_state(record, state, error)

        return _on_state

    def _handle_state(
        self, record: SubscriptionRecord, state: ChannelState, error: BaseException | None,
    ) -> None:
        extra = {"subscription_id": record.id}
        if state is ChannelState.SUBSCRIBED:
            logger.info("Subscription active", extra=extra)
            record.reconnect_attempts = 0
            record.state = SubscriptionState.ACTIVE
        elif state is ChannelState.CLOSED:
            logger.info("Subscription closed", extra=extra)
        elif state is ChannelState.CHANNEL_ERROR:
            logger.error(f"Subscription channel error: {error}", extra=extra)
            self._forward_error(record, error or ConnectionError("Channel error"))
            if record.options.auto_reconnect:
                self._schedule_reconnect(record)
        elif state is ChannelState.TIMED_OUT:
            logger.warning("Subscription timed out", extra=extra)
            if record.options.auto_reconnect:
                self._schedule_reconnect(record)

    # ─── Reconnection ────────────────────────────────────────────

    def _schedule_reconnect(self, record: SubscriptionRecord) -> None:
        if not record.active:
            return
        if record.reconnect_attempts >= record.options.max_reconnect_attempts:
            self._deactivate(record)
            return
        self._disarm_timer(record)
        record.state = SubscriptionState.RECONNECTING
        record.timer_armed = True
        record.reconnect_task = asyncio.create_task(self._delayed_reconnect(record))

    async def _delayed_reconnect(self, record: SubscriptionRecord) -> None:
        await self._sleep(record.options.reconnect_delay_ms / 1000)
        record.timer_armed = False
        await self._attempt_reconnect(record)

    async def _attempt_reconnect(self, record: SubscriptionRecord) -> None:
        async with record.lock:
            if not record.active or self._records.get(record.id) is not record:
                return
            # bulk recovery reaches here without passing _schedule_reconnect
            if record.reconnect_attempts >= record.options.max_reconnect_attempts:
                self._deactivate(record)
                return
            record.reconnect_attempts += 1
            record.state = SubscriptionState.RECONNECTING
            logger.info(
                "Attempting to reconnect subscription",
                extra={"subscription_id": record.id, "attempt": record.reconnect_attempts},
            )
            old, record.channel = record.channel, None
            await self._release(old)
            await self._open_channel(record)

    def _disarm_timer(self, record: SubscriptionRecord) -> None:
        """Cancel a reconnection that is still waiting out its delay."""
        task = record.reconnect_task
        if record.timer_armed and task is not None and not task.done():
            task.cancel()
        record.timer_armed = False

    def _deactivate(self, record: SubscriptionRecord) -> None:
        record.active = False
        record.state = SubscriptionState.PERMANENTLY_INACTIVE
        logger.error(
            "Max reconnection attempts reached",
            extra={"subscription_id": record.id, "attempt": record.reconnect_attempts},
        )
        if not record.terminal_reported:
            record.terminal_reported = True
            self._notifier.show_error(RESUBSCRIBE_FAILED_NOTICE)
        task = asyncio.ensure_future(self._release_detached(record))
        self._releases.add(task)
        task.add_done_callback(self._releases.discard)

    async def _release_detached(self, record: SubscriptionRecord) -> None:
        """Release a deactivated record's channel unless unsubscribe() already did."""
        channel, record.channel = record.channel, None
        await self._release(channel)

    # ─── Connection-wide recovery ────────────────────────────────

    def _on_status_change(self, status: ConnectionStatus) -> None:
        previous, self._last_status = self._last_status, status
        if status is ConnectionStatus.CONNECTED and previous is not ConnectionStatus.CONNECTED:
            self._recover_all()
        elif status is ConnectionStatus.ERROR:
            logger.warning("Connection lost, subscriptions may be affected")

    def _recover_all(self) -> None:
        """Reconnect every active record once; records mid-attempt keep their attempt."""
        records = [r for r in self._records.values() if r.active]
        logger.info(f"Connection restored, resubscribing {len(records)} subscription(s)")
        for record in records:
            in_flight = (
                record.reconnect_task is not None
                and not record.reconnect_task.done()
                and not record.timer_armed
            )
            if in_flight:
                continue
            self._disarm_timer(record)
            record.reconnect_task = asyncio.create_task(self._attempt_reconnect(record))

    # ─── Callback isolation ──────────────────────────────────────

    def _change_handler(self, record: SubscriptionRecord) -> Callable[[ChangePayload], None]:
        def _on_change(payload: ChangePayload) -> None:
            if not record.active:
                return
            logger.debug(
                f"Change event {payload.event_type} on {payload.table}",
                extra={"subscription_id": record.id},
            )
            try:
                result = record.callback(payload)
            except Exception as e:
                self._callback_failed(record, e)
                return
            if inspect.isawaitable(result):
                self._spawn(self._await_callback(record, result))

        return _on_change

    async def _await_callback(self, record: SubscriptionRecord, pending: Awaitable) -> None:
        try:
            await pending
        except Exception as e:
            self._callback_failed(record, e)

    def _callback_failed(self, record: SubscriptionRecord, error: Exception) -> None:
        logger.error(
            f"Error in subscription callback: {error}",
            extra={"subscription_id": record.id},
            exc_info=error,
        )
        self._forward_error(record, error)

    def _forward_error(self, record: SubscriptionRecord, error: BaseException) -> None:
        handler = record.options.on_error
        if handler is None:
            return
        try:
            handler(error)
        except Exception as e:
            logger.error(
                f"Error in subscription error handler: {e}",
                extra={"subscription_id": record.id},
            )

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
