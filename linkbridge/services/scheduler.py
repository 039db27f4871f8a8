import asyncio
from typing import Awaitable, Callable

from linkbridge.logging_config import get_logger

logger = get_logger("scheduler")

Callback = Callable[[], Awaitable[None]]


class Scheduler:
    """Fire-and-forget delayed callbacks. There is no cancel: callbacks re-check state when they fire."""

    def schedule_after(self, delay_seconds: float, callback: Callback) -> None:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    def __init__(self, sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep_func
        self._tasks: set[asyncio.Task] = set()

    def schedule_after(self, delay_seconds: float, callback: Callback) -> None:
        task = asyncio.create_task(self._run_later(delay_seconds, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_later(self, delay_seconds: float, callback: Callback) -> None:
        await self._sleep(delay_seconds)
        try:
            await callback()
        except Exception as exc:
            logger.error(
                "Scheduled callback failed",
                exc_info=True,
                extra={"context": {"delay_seconds": delay_seconds, "error": str(exc)}},
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
