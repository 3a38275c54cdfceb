"""SchedulerLoop: decides which tasks are due on a tick and dispatches them."""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field

from cron_runner import cron
from cron_runner.cache import utcnow
from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionResult, TaskExecutionLog
from cron_runner.executor_factory import TaskExecutor
from cron_runner.scheduler.state import SchedulerState

logger = logging.getLogger(__name__)


class TaskOutcome(str, Enum):
    NO_SCHEDULE = "no_schedule"
    INVALID_SCHEDULE = "invalid_schedule"
    NOT_DUE = "not_due"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR = "error"


class TickSummary(BaseModel):
    """
    Informational summary of one tick.
    """
    started_at: datetime
    task_count: int = 0
    outcomes: Dict[TaskOutcome, int] = Field(default_factory=dict)
    duration_seconds: float = 0.0

    def count(self, outcome: TaskOutcome) -> int:
        return self.outcomes.get(outcome, 0)

    @property
    def dispatched(self) -> int:
        return self.count(TaskOutcome.SUCCEEDED) + self.count(TaskOutcome.FAILED)


class SchedulerLoop:
    """Runs one scheduling pass per call to :meth:`tick`.

    Each enabled task is evaluated concurrently. A task is dispatched when its
    schedule is due and it is not already in flight; the in-flight marker is
    always released once the dispatch settles.

    Args:
        state: Shared scheduler state (settings, cache, in-flight set).
        executor: Executes due tasks. Defaults to HTTP plus placeholder protocols.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        state: SchedulerState,
        executor: Optional[TaskExecutor] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.state = state
        self.executor = executor or TaskExecutor.with_defaults(state.settings.default_timeout_seconds)
        self._clock = clock
        self._semaphore = asyncio.Semaphore(state.settings.max_concurrent_executions)

    async def tick(self) -> TickSummary:
        started = time.monotonic()
        now = self._clock()

        tasks = await self.state.cache.get()
        if not tasks:
            logger.info("No enabled tasks, nothing to schedule")
            return TickSummary(started_at=now)

        logger.debug("Evaluating %d enabled task(s)", len(tasks))
        outcomes = await asyncio.gather(*(self._process_task(task, now) for task in tasks))

        summary = TickSummary(
            started_at=now,
            task_count=len(tasks),
            outcomes=dict(Counter(outcomes)),
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "Tick finished in %.3fs: %d task(s), %d dispatched, %d skipped as in flight",
            summary.duration_seconds,
            summary.task_count,
            summary.dispatched,
            summary.count(TaskOutcome.IN_FLIGHT),
        )
        return summary

    async def run_now(self, task: TaskDefinition) -> Optional[ExecutionResult]:
        """Execute a task immediately regardless of its schedule.

        Returns None when the task is already in flight.
        """
        return await self._dispatch(task)

    async def _process_task(self, task: TaskDefinition, now: datetime) -> TaskOutcome:
        settings = self.state.settings
        try:
            if not task.schedule:
                return TaskOutcome.NO_SCHEDULE
            try:
                schedule = cron.parse(task.schedule)
            except cron.ScheduleParseError as e:
                logger.debug("Task %s (%s) skipped: %s", task.id, task.name, e)
                return TaskOutcome.INVALID_SCHEDULE

            if not cron.is_due(schedule, now, settings.due_tolerance_seconds, settings.tzinfo):
                return TaskOutcome.NOT_DUE

            result = await self._dispatch(task)
            if result is None:
                return TaskOutcome.IN_FLIGHT
            return TaskOutcome.SUCCEEDED if result.is_success else TaskOutcome.FAILED
        except Exception:
            logger.exception("Unexpected error while processing task %s (%s)", task.id, task.name)
            return TaskOutcome.ERROR

    async def _dispatch(self, task: TaskDefinition) -> Optional[ExecutionResult]:
        in_flight = self.state.in_flight
        if not in_flight.try_acquire(task.id):
            logger.info("Task %s (%s) is still running, skipping this run", task.id, task.name)
            return None

        try:
            async with self._semaphore:
                log_id = await self._record_start(task)
                try:
                    result = await self.executor.execute(task)
                except Exception as e:
                    logger.exception("Executor raised for task %s (%s)", task.id, task.name)
                    result = ExecutionResult.failed(f"Unexpected error: {str(e)}")
                await self._record_end(task, log_id, result)
                return result
        finally:
            in_flight.release(task.id)

    async def _record_start(self, task: TaskDefinition) -> Optional[int]:
        entry = TaskExecutionLog.start(task, self.state.settings.hostname, self._clock())
        try:
            return await self.state.store.insert_execution_log(entry)
        except Exception:
            # the run still happens, it just won't appear in history
            logger.exception("Could not create execution log for task %s (%s)", task.id, task.name)
            return None

    async def _record_end(self, task: TaskDefinition, log_id: Optional[int], result: ExecutionResult) -> None:
        logger.info(
            "Task %s (%s) finished: %s (%s)",
            task.id, task.name, result.status.name, result.message,
        )
        if log_id is None:
            return
        try:
            await self.state.store.update_execution_log(log_id, result.status, result.message, self._clock())
        except Exception:
            logger.exception("Could not complete execution log %s for task %s", log_id, task.id)
