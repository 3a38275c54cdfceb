import threading
from datetime import timedelta
from typing import FrozenSet, Optional, Set

from cron_runner.cache import TaskCache
from cron_runner.config import SchedulerSettings
from cron_runner.storages.protocol import TaskStore


class InFlightSet:
    """
    Ids of tasks currently between dispatch and completion.

    ``try_acquire`` checks and marks in one step, so two concurrent dispatches
    of the same task can never both succeed.
    """

    def __init__(self):
        self._ids: Set[int] = set()
        self._lock = threading.Lock()

    def try_acquire(self, task_id: int) -> bool:
        with self._lock:
            if task_id in self._ids:
                return False
            self._ids.add(task_id)
            return True

    def release(self, task_id: int) -> None:
        with self._lock:
            self._ids.discard(task_id)

    def snapshot(self) -> FrozenSet[int]:
        with self._lock:
            return frozenset(self._ids)

    def __contains__(self, task_id: int) -> bool:
        with self._lock:
            return task_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class SchedulerState:
    """
    Process-wide scheduler state: settings, the task cache and the in-flight set.

    Construct once per process and inject into the loop.
    """

    def __init__(
        self,
        store: TaskStore,
        settings: Optional[SchedulerSettings] = None,
        cache: Optional[TaskCache] = None,
    ):
        self.settings: SchedulerSettings = settings or SchedulerSettings()
        self.store: TaskStore = store
        self.cache: TaskCache = cache or TaskCache(
            store, ttl=timedelta(seconds=self.settings.cache_ttl_seconds)
        )
        self.in_flight: InFlightSet = InFlightSet()
