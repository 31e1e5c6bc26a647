"""Connection Monitor — authoritative connection-status state machine with periodic health probing.

Invariants:
    - Status changes only through _set_status; listeners fire on every transition, never on repeats
    - Listeners invoked synchronously in transition order (no coalescing); a failing listener
      never blocks the others
    - check_health: the timeout always wins the race against a slow probe
    - reconnect_attempts never exceeds max_reconnect_attempts; the terminal notice is raised
      once per episode (reset by a successful connection or a manual reconnect())
    - cleanup() cancels the probe loop and any reconnection before clearing state

Design Decisions:
    - Injected instance, no module-level singleton: tests run independent monitors
    - Fixed reconnect delay, no backoff or jitter (ADR: behaviour kept as shipped; see DESIGN.md)
    - Reconnection runs as a single asyncio task; the periodic loop awaits it instead of
      overlapping with it
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from backbone.core.domain_types import ConnectionStatus, HealthCheckResult
from backbone.core.endpoint_protocols import DataEndpoint, UserNotifier
from backbone.core.errors import HealthCheckTimeoutError
from backbone.core.observer_registry import ListenerRegistry
from backbone.core.options import MonitorConfig
from backbone.services.task_utils import cancel_task

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectionStatus], None]
Sleep = Callable[[float], Awaitable[None]]

CONNECTION_FAILED_NOTICE = (
    "Could not connect to the database. Please check your internet connection."
)
RECONNECT_FAILED_NOTICE = (
    "Reconnecting to the database failed. Please reload the page."
)
RECONNECTED_NOTICE = "Connection restored."


class ConnectionMonitor:
    """Owns one belief about backing-service reachability and broadcasts its transitions."""

    def __init__(
        self,
        endpoint: DataEndpoint,
        notifier: UserNotifier,
        config: MonitorConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._endpoint = endpoint
        self._notifier = notifier
        self.config = config or MonitorConfig()
        self._sleep = sleep
        self._status = ConnectionStatus.DISCONNECTED
        self._listeners: ListenerRegistry[StatusListener] = ListenerRegistry()
        self._reconnect_attempts = 0
        self._terminal_reported = False
        self._last_health_check: HealthCheckResult | None = None
        self._probe_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._stopped = False

    # ─── Read-only state ─────────────────────────────────────────

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def get_status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def last_health_check(self) -> HealthCheckResult | None:
        return self._last_health_check

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ─── Lifecycle ───────────────────────────────────────────────

    async def initialize(self) -> None:
        """Probe once, settle the initial status, then start the periodic loop."""
        logger.info("Initializing connection monitor")
        self._stopped = False
        result = await self.check_health()
        if result.healthy:
            self._set_status(ConnectionStatus.CONNECTED)
            logger.info(
                "Backing service connection established",
                extra={"latency_ms": result.latency_ms},
            )
        else:
            self._set_status(ConnectionStatus.ERROR)
            logger.error(f"Backing service connection failed: {result.error}")
            if self.config.auto_reconnect:
                await self._run_reconnect()
        # cleanup() may have run while the initial reconnection was pending
        if not self._stopped:
            self._start_probe_loop()

    async def cleanup(self) -> None:
        """Stop probing and reconnecting, drop listeners, mark DISCONNECTED."""
        logger.info("Cleaning up connection monitor")
        self._stopped = True
        for task in (self._probe_task, self._reconnect_task):
            await cancel_task(task)
        self._probe_task = None
        self._reconnect_task = None
        self._listeners.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)

    # ─── Probing ─────────────────────────────────────────────────

    async def check_health(self) -> HealthCheckResult:
        """Run one probe raced against health_check_timeout_ms."""
        timeout_ms = self.config.health_check_timeout_ms
        started = time.perf_counter()
        try:
            await asyncio.wait_for(self._endpoint.probe(), timeout_ms / 1000)
        except asyncio.TimeoutError:
            result = HealthCheckResult(
                healthy=False,
                latency_ms=_elapsed_ms(started),
                error=HealthCheckTimeoutError(timeout_ms),
            )
        except Exception as e:
            result = HealthCheckResult(
                healthy=False, latency_ms=_elapsed_ms(started), error=e,
            )
        else:
            result = HealthCheckResult(healthy=True, latency_ms=_elapsed_ms(started))
        self._last_health_check = result
        return result

    async def validate_connection(self) -> bool:
        """One-shot startup validation that tells the user when the service is unreachable."""
        logger.info("Validating backing service connection")
        result = await self.check_health()
        if not result.healthy:
            logger.error(f"Connection validation failed: {result.error}")
            self._notifier.show_error(CONNECTION_FAILED_NOTICE)
            return False
        logger.info(
            "Connection validation successful",
            extra={"latency_ms": result.latency_ms},
        )
        return True

    async def poll_once(self) -> None:
        """One iteration of the periodic probe loop."""
        if self.is_reconnecting:
            return
        result = await self.check_health()
        if not result.healthy and self._status is ConnectionStatus.CONNECTED:
            logger.warning("Health check failed, connection may be lost")
            self._set_status(ConnectionStatus.ERROR)
            if self.config.auto_reconnect:
                await self._run_reconnect()
        elif result.healthy and self._status is not ConnectionStatus.CONNECTED:
            logger.info("Connection restored")
            self._mark_connected()

    def _start_probe_loop(self) -> None:
        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = asyncio.create_task(self._probe_loop())

    async def _probe_loop(self) -> None:
        interval = self.config.health_check_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Health check loop iteration failed: {e}", exc_info=True)

    # ─── Reconnection ────────────────────────────────────────────

    async def reconnect(self) -> None:
        """Reset the attempt counter and reconnect now, whatever the current status."""
        logger.info("Manual reconnection triggered")
        await cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._reconnect_attempts = 0
        self._terminal_reported = False
        await self._run_reconnect()

    async def _run_reconnect(self) -> None:
        if not self.is_reconnecting:
            self._reconnect_task = asyncio.create_task(self._reconnect_sequence())
        task = self._reconnect_task
        # wait() rather than await: a sequence cancelled by reconnect()/cleanup()
        # must not cancel the caller (e.g. the probe loop) with it
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def _reconnect_sequence(self) -> None:
        """Fixed-delay attempts until healthy or the ceiling is reached."""
        while self._reconnect_attempts < self.config.max_reconnect_attempts:
            self._reconnect_attempts += 1
            self._set_status(ConnectionStatus.CONNECTING)
            logger.info(
                "Attempting to reconnect",
                extra={"attempt": self._reconnect_attempts},
            )
            await self._sleep(self.config.reconnect_delay_ms / 1000)
            result = await self.check_health()
            if result.healthy:
                self._mark_connected()
                logger.info("Reconnection successful")
                self._notifier.show_success(RECONNECTED_NOTICE)
                return
            self._set_status(ConnectionStatus.ERROR)
        self._report_terminal_failure()

    def _report_terminal_failure(self) -> None:
        if self._terminal_reported:
            return
        self._terminal_reported = True
        logger.error(
            "Max reconnection attempts reached",
            extra={"attempt": self._reconnect_attempts},
        )
        self._notifier.show_error(RECONNECT_FAILED_NOTICE)

    def _mark_connected(self) -> None:
        self._reconnect_attempts = 0
        self._terminal_reported = False
        self._set_status(ConnectionStatus.CONNECTED)

    # ─── Status broadcasting ─────────────────────────────────────

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Register a transition listener; returns an idempotent unsubscribe handle."""
        token = self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.remove(token)

        return _unsubscribe

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.debug(
            f"Connection status {previous.value} -> {status.value}",
            extra={"status": status.value},
        )
        for listener in self._listeners.snapshot():
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Error in connection status listener: {e}", exc_info=True)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

