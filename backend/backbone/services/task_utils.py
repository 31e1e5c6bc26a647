"""Task helpers shared by the monitor and the subscription manager."""

import asyncio
from contextlib import suppress


async def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel a task and wait for it to finish. No-op for None, done, or the running task."""
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
