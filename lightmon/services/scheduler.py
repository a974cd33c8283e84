from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TaskTimer:
    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


class AsyncioScheduler:
    """One-shot delayed callbacks on the running event loop.

    Errors raised by a callback are logged and dropped so one device's
    failure never reaches the loop or other devices.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def run_in(
        self,
        delay_s: float,
        callback: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> TaskTimer:
        name = getattr(callback, "__name__", "callback")
        task = asyncio.get_running_loop().create_task(
            self._fire(delay_s, callback, args), name=f"run_in:{name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return TaskTimer(task)

    async def _fire(
        self,
        delay_s: float,
        callback: Callable[..., Awaitable[Any]],
        args: tuple,
    ) -> None:
        await asyncio.sleep(max(0.0, delay_s))
        try:
            await callback(*args)
        except Exception as e:
            logger.exception(
                "Scheduled %s%r failed: %s", getattr(callback, "__name__", "callback"), args, e,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        logger.info("Scheduler stopped (%d pending callbacks cancelled)", len(tasks))
