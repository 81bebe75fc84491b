import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from reminder_scheduler.utils.datetime_utils import utc_now
from reminder_scheduler.utils.logging import get_logger


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall clock in UTC, sleeping on the running event loop"""

    def now(self) -> datetime:
        return utc_now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class PeriodicTask:
    """
    Run ``func`` every ``interval_seconds`` until stopped.

    The interval is measured from the end of one run to the start of the
    next, so a slow run never overlaps the following one. An exception
    from ``func`` is logged and the loop carries on; cancellation ends it.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        clock: Optional[Clock] = None,
        wait_first: bool = False,
    ):
        self.name = name
        self.interval_seconds = float(interval_seconds)
        self.func = func
        self.clock = clock or SystemClock()
        self.wait_first = wait_first
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._runner(), name=self.name)
        return self._task

    async def run_once(self) -> None:
        logger = get_logger()
        try:
            await self.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.opt(exception=True).error(
                "Periodic task failed", task=self.name, error=str(e)
            )

    async def _runner(self) -> None:
        if self.wait_first:
            await self.clock.sleep(self.interval_seconds)

        while True:
            await self.run_once()
            await self.clock.sleep(self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        get_logger().info("Periodic task stopped", task=self.name)
