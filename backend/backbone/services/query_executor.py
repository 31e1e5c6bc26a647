"""Query Executor — classification-aware, bounded fixed-delay retry around backing-service calls.

Invariants:
    - Returns QueryResult for every expected failure; never raises service errors to callers
    - Never calls the operation while the monitor is not CONNECTED (one grace wait if CONNECTING)
    - At most max_retries retries (max_retries + 1 attempts), stopping on the first success
    - Only errors classified retryable are retried; mutations are never retried
    - Retryable failures reach the user only once retries are exhausted

Design Decisions:
    - Constant retry_delay_ms between attempts, no exponential backoff (ADR: shipped behaviour)
    - Sleep injected: tests observe delays without waiting for them
    - asyncio.CancelledError passes through untouched (BaseException): task cancellation
      is the only way to abandon an in-flight call
"""

import asyncio
import dataclasses
import inspect
import logging
from typing import Any, Awaitable, Callable, Sequence

from backbone.core.classify_error import classify_error, network_unavailable_error
from backbone.core.domain_types import ConnectionStatus
from backbone.core.endpoint_protocols import Operation, ServiceResponse, UserNotifier
from backbone.core.errors import CategorizedError
from backbone.core.options import QueryOptions
from backbone.core.query_result import BatchResult, QueryResult
from backbone.services.connection_monitor import ConnectionMonitor

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class _ReportedFailure(Exception):
    """Carries an error a collaborator returned inside a ServiceResponse."""

    def __init__(self, error: BaseException | None):
        super().__init__(str(error) if error else "Service reported an error")
        self.error = error


class QueryExecutor:
    """Runs unary operations against the backing service with retry and classification."""

    def __init__(
        self,
        monitor: ConnectionMonitor,
        notifier: UserNotifier,
        defaults: QueryOptions | None = None,
        connecting_grace_ms: int = 2_000,
        sleep: Sleep = asyncio.sleep,
    ):
        self._monitor = monitor
        self._notifier = notifier
        self.defaults = defaults or QueryOptions()
        self._connecting_grace_ms = connecting_grace_ms
        self._sleep = sleep

    async def execute_query(
        self, operation: Operation, options: QueryOptions | None = None, **overrides: Any,
    ) -> QueryResult:
        """Execute a read with retry on retryable failures."""
        opts = self._resolve(options, overrides)

        refused = await self._refuse_if_unreachable(opts)
        if refused is not None:
            return refused

        for attempt in range(opts.max_retries + 1):
            try:
                data = await self._invoke(operation)
            except Exception as e:
                error = classify_error(_unwrap(e), opts.context)
                self._log_failure(error, attempt, opts)
                if self._should_retry(error, attempt, opts):
                    logger.info(
                        f"Retrying query in {opts.retry_delay_ms}ms",
                        extra={"attempt": attempt + 2, **error.to_log_extra()},
                    )
                    await self._sleep(opts.retry_delay_ms / 1000)
                    continue
                return self._fail(error, opts)
            logger.debug("Query successful", extra={"attempt": attempt + 1})
            return QueryResult.ok(data)

        # Unreachable: the final iteration always returns
        return self._fail(classify_error(None, opts.context), opts)

    async def execute_mutation(
        self, operation: Operation, options: QueryOptions | None = None, **overrides: Any,
    ) -> QueryResult:
        """Execute a write. Writes are never retried, whatever the caller asks for."""
        opts = self._resolve(options, overrides)
        return await self.execute_query(
            operation, dataclasses.replace(opts, retry_on_failure=False, max_retries=0),
        )

    async def execute_silent_query(
        self, operation: Operation, options: QueryOptions | None = None, **overrides: Any,
    ) -> QueryResult:
        """Execute a background read without user-facing error notices."""
        opts = self._resolve(options, overrides)
        return await self.execute_query(
            operation, dataclasses.replace(opts, show_error_to_user=False),
        )

    async def wrap(
        self, pending: Awaitable[Any], options: QueryOptions | None = None, **overrides: Any,
    ) -> QueryResult:
        """Shape an already-built awaitable into a QueryResult.

        A coroutine can only be awaited once, so it runs as a single attempt;
        use execute_query with an operation factory when retries matter.
        """
        opts = self._resolve(options, overrides)

        async def _once() -> Any:
            return await pending

        try:
            return await self.execute_query(
                _once, dataclasses.replace(opts, retry_on_failure=False, max_retries=0),
            )
        finally:
            # a refused call never awaits it; close() is a no-op once finished
            if inspect.iscoroutine(pending):
                pending.close()

    async def execute_batch(
        self, operations: Sequence[Operation], options: QueryOptions | None = None, **overrides: Any,
    ) -> BatchResult:
        """Run all operations concurrently; never short-circuits on a failure."""
        opts = self._resolve(options, overrides)
        results = await asyncio.gather(
            *(self.execute_query(op, opts) for op in operations)
        )
        return BatchResult(results=list(results))

    # ─── Internals ───────────────────────────────────────────────

    def _resolve(self, options: QueryOptions | None, overrides: dict) -> QueryOptions:
        opts = options or self.defaults
        return dataclasses.replace(opts, **overrides) if overrides else opts

    async def _refuse_if_unreachable(self, opts: QueryOptions) -> QueryResult | None:
        if self._monitor.is_connected:
            return None
        logger.warning(
            "Query attempted while disconnected",
            extra={"status": self._monitor.status.value},
        )
        if self._monitor.status is ConnectionStatus.CONNECTING:
            await self._sleep(self._connecting_grace_ms / 1000)
        if self._monitor.is_connected:
            return None
        return self._fail(network_unavailable_error(opts.context), opts)

    async def _invoke(self, operation: Operation) -> Any:
        response = await operation()
        if isinstance(response, ServiceResponse):
            if response.error is not None:
                raise _ReportedFailure(response.error)
            return response.data
        return response

    def _should_retry(
        self, error: CategorizedError, attempt: int, opts: QueryOptions,
    ) -> bool:
        return opts.retry_on_failure and attempt < opts.max_retries and error.retryable

    def _log_failure(
        self, error: CategorizedError, attempt: int, opts: QueryOptions,
    ) -> None:
        if not opts.log_error:
            return
        logger.error(
            f"Query error: {error.message}",
            extra={
                "attempt": attempt + 1,
                "max_retries": opts.max_retries,
                **error.to_log_extra(),
                "query_context": opts.context,
            },
        )

    def _fail(self, error: CategorizedError, opts: QueryOptions) -> QueryResult:
        if opts.show_error_to_user:
            self._notifier.show_error(error.user_message)
        return QueryResult.fail(error)


def _unwrap(error: Exception) -> BaseException | None:
    if isinstance(error, _ReportedFailure):
        return error.error
    return error
