"""Query Executor — verifies retry policy, refusal while disconnected, and result shaping.

Tests:
    - Retryable failures retried with a fixed delay; success stops the loop
    - Exhausted retries: max_retries + 1 calls, one user notice
    - Non-retryable failures and mutations are attempted exactly once
    - Operations never invoked while not CONNECTED (single grace wait when CONNECTING)
    - ServiceResponse envelopes unwrapped; their errors classified by code
    - Batches run concurrently and keep input order
"""

import asyncio
import logging

import pytest

from backbone.core.domain_types import ConnectionStatus
from backbone.core.endpoint_protocols import ServiceResponse
from backbone.core.errors import ErrorCategory, ServiceError
from backbone.core.options import QueryOptions
from backbone.services.query_executor import QueryExecutor
from tests.services.fakes import FakeNotifier, RecordingSleep


class StubMonitor:
    def __init__(self, status=ConnectionStatus.CONNECTED):
        self.status = status

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


class ScriptedOperation:
    """Zero-arg operation returning/raising scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _transient():
    return ServiceError("could not connect to server", "08006")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def monitor():
    return StubMonitor()


@pytest.fixture
def executor(monitor, notifier, sleep):
    return QueryExecutor(monitor, notifier, sleep=sleep)


async def test_success_on_first_attempt(executor, sleep, notifier):
    op = ScriptedOperation([{"id": 1}])
    result = await executor.execute_query(op)
    assert result.success is True
    assert result.data == [{"id": 1}]
    assert op.calls == 1
    assert sleep.delays == []
    assert notifier.errors == []


async def test_retryable_failure_then_success(executor, sleep, notifier):
    op = ScriptedOperation(_transient(), _transient(), "rows")
    result = await executor.execute_query(op)
    assert result.success is True
    assert result.data == "rows"
    assert op.calls == 3
    assert sleep.delays == [1.0, 1.0]
    assert notifier.errors == []


async def test_retries_exhausted(executor, sleep, notifier):
    op = ScriptedOperation(_transient())
    result = await executor.execute_query(op)
    assert result.success is False
    assert result.error.category is ErrorCategory.NETWORK
    assert op.calls == 4
    assert sleep.delays == [1.0, 1.0, 1.0]
    assert notifier.errors == [result.error.user_message]


async def test_custom_retry_count_and_delay(executor, sleep):
    op = ScriptedOperation(_transient())
    await executor.execute_query(op, max_retries=1, retry_delay_ms=250)
    assert op.calls == 2
    assert sleep.delays == [0.25]


async def test_non_retryable_failure_attempted_once(executor, sleep, notifier):
    op = ScriptedOperation(ServiceError("duplicate key value", "23505"))
    result = await executor.execute_query(op)
    assert result.error.category is ErrorCategory.VALIDATION
    assert op.calls == 1
    assert sleep.delays == []
    assert len(notifier.errors) == 1


async def test_retry_disabled(executor):
    op = ScriptedOperation(_transient())
    result = await executor.execute_query(op, QueryOptions(retry_on_failure=False))
    assert result.success is False
    assert op.calls == 1


async def test_mutation_never_retried(executor, sleep):
    op = ScriptedOperation(_transient())
    result = await executor.execute_mutation(op, max_retries=5, retry_on_failure=True)
    assert result.success is False
    assert result.error.retryable is True
    assert op.calls == 1
    assert sleep.delays == []


async def test_silent_query_suppresses_notice(executor, notifier):
    op = ScriptedOperation(ServiceError("permission denied", "42501"))
    result = await executor.execute_silent_query(op)
    assert result.error.category is ErrorCategory.AUTHORIZATION
    assert notifier.errors == []


async def test_service_response_unwrapped(executor):
    op = ScriptedOperation(ServiceResponse(data=[1, 2, 3]))
    result = await executor.execute_query(op)
    assert result.data == [1, 2, 3]


async def test_service_response_error_classified_by_code(executor):
    op = ScriptedOperation(ServiceResponse(error=ServiceError("JWT expired", "PGRST301")))
    result = await executor.execute_query(op)
    assert result.success is False
    assert result.error.category is ErrorCategory.AUTHENTICATION
    assert result.error.code == "PGRST301"
    assert op.calls == 1


async def test_refuses_while_disconnected(monitor, executor, notifier, sleep):
    monitor.status = ConnectionStatus.ERROR
    op = ScriptedOperation("rows")
    result = await executor.execute_query(op, context={"table": "courses"})
    assert op.calls == 0
    assert result.error.category is ErrorCategory.NETWORK
    assert result.error.context == {"table": "courses"}
    assert notifier.errors == [result.error.user_message]
    assert sleep.delays == []


async def test_connecting_waits_once_then_proceeds(monitor, notifier):
    monitor.status = ConnectionStatus.CONNECTING

    async def _grace(seconds):
        grace.append(seconds)
        monitor.status = ConnectionStatus.CONNECTED

    grace = []
    executor = QueryExecutor(monitor, notifier, connecting_grace_ms=1_500, sleep=_grace)
    op = ScriptedOperation("rows")
    result = await executor.execute_query(op)
    assert grace == [1.5]
    assert result.data == "rows"


async def test_connecting_still_down_after_grace(monitor, executor, sleep):
    monitor.status = ConnectionStatus.CONNECTING
    op = ScriptedOperation("rows")
    result = await executor.execute_query(op)
    assert sleep.delays == [2.0]
    assert op.calls == 0
    assert result.success is False


async def test_error_context_preserved(executor):
    op = ScriptedOperation(ValueError("bad shape"))
    result = await executor.execute_query(op, context={"op": "load_lessons"})
    assert result.error.category is ErrorCategory.DATABASE
    assert result.error.context == {"op": "load_lessons"}
    assert result.error.original_error is not None


async def test_batch_keeps_order_and_does_not_short_circuit(executor):
    ops = [
        ScriptedOperation("a"),
        ScriptedOperation(ServiceError("violates check", "23514")),
        ScriptedOperation("c"),
    ]
    batch = await executor.execute_batch(ops, show_error_to_user=False)
    assert [r.success for r in batch.results] == [True, False, True]
    assert batch.results[0].data == "a"
    assert batch.results[2].data == "c"
    assert batch.all_succeeded is False
    assert len(batch.errors) == 1


async def test_batch_runs_concurrently(executor):
    started = []
    release = asyncio.Event()

    def _op(name):
        async def _run():
            started.append(name)
            await release.wait()
            return name
        return _run

    batch_task = asyncio.create_task(executor.execute_batch([_op("x"), _op("y")]))
    for _ in range(10):
        await asyncio.sleep(0)
    assert sorted(started) == ["x", "y"]
    release.set()
    batch = await batch_task
    assert [r.data for r in batch.results] == ["x", "y"]


async def test_cancellation_propagates(executor):
    op = ScriptedOperation(asyncio.CancelledError())
    with pytest.raises(asyncio.CancelledError):
        await executor.execute_query(op)


async def test_log_error_false_skips_error_log(executor, caplog):
    op = ScriptedOperation(ValueError("quiet"))
    with caplog.at_level(logging.ERROR, logger="backbone.services.query_executor"):
        await executor.execute_query(op, log_error=False, show_error_to_user=False)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


async def test_wrap_runs_awaitable_once(executor):
    op = ScriptedOperation(_transient(), "rows")
    result = await executor.wrap(op())
    assert result.success is False
    assert result.error.retryable is True
    assert op.calls == 1


async def test_wrap_returns_data(executor):
    result = await executor.wrap(ScriptedOperation(ServiceResponse(data={"id": 3}))())
    assert result.data == {"id": 3}


async def test_wrap_refused_while_disconnected_closes_coroutine(monitor, executor):
    monitor.status = ConnectionStatus.DISCONNECTED
    op = ScriptedOperation("rows")
    pending = op()
    result = await executor.wrap(pending, show_error_to_user=False)
    assert result.success is False
    assert op.calls == 0
    assert pending.cr_frame is None
