import asyncio
import logging
from typing import Optional, Set

from cron_runner.scheduler.loop import SchedulerLoop

logger = logging.getLogger(__name__)


class PeriodicTrigger:
    """
    Fires ``SchedulerLoop.tick`` every ``interval_seconds`` using asyncio.

    Ticks are started in the background and not awaited by the timer, so a slow
    tick never delays the next one. Overlap for the same task is prevented by
    the loop's in-flight set.
    """

    def __init__(self, loop: SchedulerLoop, interval_seconds: Optional[float] = None):
        self.loop: SchedulerLoop = loop
        self.interval_seconds: float = interval_seconds or loop.state.settings.tick_interval_seconds
        self.timer_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self.tick_futures: Set[asyncio.Task] = set()

    async def start(self):
        """
        Start firing ticks.
        """
        if not self.is_running:
            self.is_running = True
            self.timer_task = asyncio.create_task(self._timer_loop())
            logger.info("Scheduler trigger started (every %ss)", self.interval_seconds)

    async def stop(self):
        """
        Stop the timer and wait for ticks already in progress.
        """
        if self.is_running:
            self.is_running = False
            if self.timer_task:
                self.timer_task.cancel()
                try:
                    await self.timer_task
                except asyncio.CancelledError:
                    pass
            await asyncio.gather(*self.tick_futures, return_exceptions=True)
            self.tick_futures.clear()
            logger.info("Scheduler trigger stopped")

    def fire(self) -> asyncio.Task:
        future = asyncio.create_task(self.loop.tick())
        self.tick_futures.add(future)
        future.add_done_callback(self._handle_tick_completion)
        return future

    def _handle_tick_completion(self, future: asyncio.Task):
        self.tick_futures.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Tick failed", exc_info=future.exception())

    async def _timer_loop(self):
        try:
            while self.is_running:
                self.fire()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            pass
