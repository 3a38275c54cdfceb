import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aioresponses import aioresponses

from cron_runner.config import SchedulerSettings
from cron_runner.domain.task import TaskDefinition, TaskProtocol
from cron_runner.domain.execution import ExecutionResult, ExecutionStatus, TaskExecutionLog, IN_PROGRESS
from cron_runner.executor_factory import TaskExecutor
from cron_runner.scheduler.loop import SchedulerLoop, TaskOutcome
from cron_runner.scheduler.state import SchedulerState
from cron_runner.storages.sqlalchemy import InMemoryTaskStore

# ten seconds past a whole hour
NOW = datetime(2024, 1, 1, 12, 0, 10, tzinfo=timezone.utc)


class RecordingStore:
    def __init__(self, tasks: List[TaskDefinition]):
        self.tasks = tasks
        self.inserted: List[TaskExecutionLog] = []
        self.updated: List[Tuple[int, ExecutionStatus, str]] = []
        self.events: List[str] = []
        self.fail_insert = False
        self.fail_update = False

    async def fetch_enabled_tasks(self) -> List[TaskDefinition]:
        return list(self.tasks)

    async def insert_execution_log(self, entry: TaskExecutionLog) -> int:
        self.events.append(f"insert:{entry.task_id}")
        if self.fail_insert:
            raise ConnectionError("insert failed")
        self.inserted.append(entry)
        return len(self.inserted)

    async def update_execution_log(self, log_id: int, status: ExecutionStatus, result: str, ended_at: datetime) -> bool:
        self.events.append(f"update:{log_id}")
        if self.fail_update:
            raise ConnectionError("update failed")
        self.updated.append((log_id, status, result))
        return True


class FakeExecutor(TaskExecutor):
    def __init__(self, delay: float = 0.0, results: Optional[Dict[int, ExecutionResult]] = None,
                 raise_for: Tuple[int, ...] = (), events: Optional[List[str]] = None):
        super().__init__()
        self.delay = delay
        self.results = results or {}
        self.raise_for = raise_for
        self.events = events
        self.calls: List[int] = []

    async def execute(self, task: TaskDefinition) -> ExecutionResult:
        self.calls.append(task.id)
        if self.events is not None:
            self.events.append(f"execute:{task.id}")
        if self.delay:
            await asyncio.sleep(self.delay)
        if task.id in self.raise_for:
            raise RuntimeError(f"executor crashed on {task.id}")
        return self.results.get(task.id, ExecutionResult.succeeded("HTTP 200 OK"))


def task(task_id: int, schedule: str = "* * * * *", **kwargs) -> TaskDefinition:
    return TaskDefinition(id=task_id, name=f"Task {task_id}", schedule=schedule,
                          endpoint=f"https://example.com/{task_id}", **kwargs)


@pytest.fixture
def settings() -> SchedulerSettings:
    return SchedulerSettings(hostname="test-node", timezone="UTC", due_tolerance_seconds=60)


def make_loop(tasks, settings, executor=None, store=None):
    store = store or RecordingStore(tasks)
    state = SchedulerState(store, settings)
    loop = SchedulerLoop(state, executor=executor or FakeExecutor(), clock=lambda: NOW)
    return loop, store


@pytest.mark.asyncio
async def test_tick_with_no_tasks(settings: SchedulerSettings) -> None:
    loop, _ = make_loop([], settings)

    summary = await loop.tick()

    assert summary.task_count == 0
    assert summary.dispatched == 0


@pytest.mark.asyncio
async def test_tick_dispatches_only_due_tasks(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    tasks = [
        task(1, "* * * * *"),
        task(2, "0 * * * *"),
        task(3, "30 * * * *"),
        task(4, "0 0 12 * * *"),
    ]
    loop, store = make_loop(tasks, settings, executor)

    summary = await loop.tick()

    assert sorted(executor.calls) == [1, 2, 4]
    assert summary.count(TaskOutcome.SUCCEEDED) == 3
    assert summary.count(TaskOutcome.NOT_DUE) == 1
    assert len(store.inserted) == 3
    assert all(status == ExecutionStatus.SUCCEEDED for _, status, _ in store.updated)


@pytest.mark.asyncio
async def test_tick_skips_empty_and_invalid_schedules(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    tasks = [task(1, ""), task(2, "* * *"), task(3, "99 * * * *"), task(4, "* * * * *")]
    loop, _ = make_loop(tasks, settings, executor)

    summary = await loop.tick()

    assert executor.calls == [4]
    assert summary.count(TaskOutcome.NO_SCHEDULE) == 1
    assert summary.count(TaskOutcome.INVALID_SCHEDULE) == 2
    assert summary.count(TaskOutcome.SUCCEEDED) == 1


@pytest.mark.asyncio
async def test_log_written_before_and_after_execution(settings: SchedulerSettings) -> None:
    store = RecordingStore([task(1)])
    executor = FakeExecutor(events=store.events)
    loop, _ = make_loop(None, settings, executor, store)

    await loop.tick()

    assert store.events == ["insert:1", "execute:1", "update:1"]
    entry = store.inserted[0]
    assert entry.status == ExecutionStatus.RUNNING
    assert entry.result == IN_PROGRESS
    assert entry.hostname == "test-node"
    assert entry.started_at == NOW
    assert store.updated == [(1, ExecutionStatus.SUCCEEDED, "HTTP 200 OK")]


@pytest.mark.asyncio
async def test_failed_execution_is_recorded(settings: SchedulerSettings) -> None:
    executor = FakeExecutor(results={1: ExecutionResult.failed("HTTP error: 500 Internal Server Error")})
    loop, store = make_loop([task(1)], settings, executor)

    summary = await loop.tick()

    assert summary.count(TaskOutcome.FAILED) == 1
    assert store.updated == [(1, ExecutionStatus.FAILED, "HTTP error: 500 Internal Server Error")]


@pytest.mark.asyncio
async def test_same_task_is_not_dispatched_twice_concurrently(settings: SchedulerSettings) -> None:
    executor = FakeExecutor(delay=0.1)
    loop, _ = make_loop([task(1)], settings, executor)

    first, second = await asyncio.gather(loop.tick(), loop.tick())

    assert executor.calls == [1]
    assert first.dispatched + second.dispatched == 1
    assert first.count(TaskOutcome.IN_FLIGHT) + second.count(TaskOutcome.IN_FLIGHT) == 1
    assert 1 not in loop.state.in_flight


@pytest.mark.asyncio
async def test_in_flight_released_when_executor_raises(settings: SchedulerSettings) -> None:
    executor = FakeExecutor(raise_for=(1,))
    loop, store = make_loop([task(1), task(2)], settings, executor)

    summary = await loop.tick()

    assert 1 not in loop.state.in_flight
    assert len(loop.state.in_flight) == 0
    assert sorted(executor.calls) == [1, 2]
    assert summary.count(TaskOutcome.FAILED) == 1
    assert summary.count(TaskOutcome.SUCCEEDED) == 1
    failed = [u for u in store.updated if u[1] == ExecutionStatus.FAILED]
    assert "executor crashed on 1" in failed[0][2]

    # the task can run again on the next tick
    await loop.tick()
    assert sorted(executor.calls) == [1, 1, 2, 2]


@pytest.mark.asyncio
async def test_log_insert_failure_does_not_block_execution(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    loop, store = make_loop([task(1)], settings, executor)
    store.fail_insert = True

    summary = await loop.tick()

    assert executor.calls == [1]
    assert summary.count(TaskOutcome.SUCCEEDED) == 1
    assert store.updated == []
    assert len(loop.state.in_flight) == 0


@pytest.mark.asyncio
async def test_log_update_failure_is_dropped(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    loop, store = make_loop([task(1), task(2)], settings, executor)
    store.fail_update = True

    summary = await loop.tick()

    assert summary.count(TaskOutcome.SUCCEEDED) == 2
    assert len(loop.state.in_flight) == 0


@pytest.mark.asyncio
async def test_unexpected_error_is_isolated(settings: SchedulerSettings) -> None:
    class BrokenInFlight:
        def try_acquire(self, task_id):
            if task_id == 1:
                raise RuntimeError("broken")
            return True

        def release(self, task_id):
            pass

    executor = FakeExecutor()
    loop, _ = make_loop([task(1), task(2)], settings, executor)
    loop.state.in_flight = BrokenInFlight()

    summary = await loop.tick()

    assert executor.calls == [2]
    assert summary.count(TaskOutcome.ERROR) == 1
    assert summary.count(TaskOutcome.SUCCEEDED) == 1


@pytest.mark.asyncio
async def test_run_now_ignores_schedule(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    loop, store = make_loop([], settings, executor)

    result = await loop.run_now(task(5, "30 3 * * *"))

    assert result.is_success
    assert executor.calls == [5]
    assert len(store.inserted) == 1


@pytest.mark.asyncio
async def test_run_now_respects_in_flight(settings: SchedulerSettings) -> None:
    executor = FakeExecutor()
    loop, _ = make_loop([], settings, executor)
    loop.state.in_flight.try_acquire(5)

    assert await loop.run_now(task(5)) is None
    assert executor.calls == []


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    settings = SchedulerSettings(hostname="test-node", max_concurrent_executions=2)
    running = 0
    peak = 0

    class CountingExecutor(FakeExecutor):
        async def execute(self, task: TaskDefinition) -> ExecutionResult:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return ExecutionResult.succeeded("ok")

    loop, _ = make_loop([task(i) for i in range(1, 7)], settings, CountingExecutor())

    summary = await loop.tick()

    assert summary.dispatched == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_configured_timezone_decides_due_time() -> None:
    # 12:00 UTC is 20:00 in Shanghai
    settings = SchedulerSettings(hostname="test-node", timezone="Asia/Shanghai")
    executor = FakeExecutor()
    loop, _ = make_loop([task(1, "0 20 * * *"), task(2, "0 12 * * *")], settings, executor)

    await loop.tick()

    assert executor.calls == [1]


@pytest_asyncio.fixture
async def sqlite_store():
    store = InMemoryTaskStore()
    await store.create_tables()
    yield store
    await store.dispose()


@pytest.mark.asyncio
async def test_end_to_end_with_sqlalchemy_store(settings: SchedulerSettings, sqlite_store: InMemoryTaskStore) -> None:
    await sqlite_store.add_task(task(1, "* * * * *", endpoint="https://example.com/ok"))
    await sqlite_store.add_task(task(2, "* * * * *", endpoint="https://example.com/fail"))
    await sqlite_store.add_task(task(3, "* * * * *", protocol=TaskProtocol.SSH))
    await sqlite_store.add_task(task(4, "* * * * *", enabled=False))

    state = SchedulerState(sqlite_store, settings)
    loop = SchedulerLoop(state, clock=lambda: NOW)

    with aioresponses() as m:
        m.get("https://example.com/ok", status=200)
        m.get("https://example.com/fail", status=500)
        summary = await loop.tick()

    assert summary.task_count == 3
    assert summary.count(TaskOutcome.SUCCEEDED) == 1
    assert summary.count(TaskOutcome.FAILED) == 2

    [ok] = await sqlite_store.list_execution_logs(1)
    assert ok.status == ExecutionStatus.SUCCEEDED
    assert ok.ended_at is not None

    [fail] = await sqlite_store.list_execution_logs(2)
    assert fail.status == ExecutionStatus.FAILED
    assert "500" in fail.result

    [ssh] = await sqlite_store.list_execution_logs(3)
    assert ssh.result == "protocol not implemented"

    assert await sqlite_store.list_execution_logs(4) == []
