"""TaskCache: amortises task reads across scheduler ticks."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field

from cron_runner.domain.task import TaskDefinition
from cron_runner.storages.protocol import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheSnapshot(BaseModel):
    tasks: Tuple[TaskDefinition, ...] = ()
    fetched_at: Optional[datetime] = None

    model_config = {"frozen": True}


class CacheInfo(BaseModel):
    task_count: int
    fetched_at: Optional[datetime]
    is_expired: bool


class TaskCache:
    """Holds the last-fetched set of enabled tasks.

    The TTL is a safety net; the CRUD layer is expected to call
    :meth:`invalidate` after every task mutation.

    Args:
        store: Source of enabled tasks.
        ttl: Age after which the snapshot is refetched.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        store: TaskStore,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._snapshot = CacheSnapshot()
        self._refresh_lock = asyncio.Lock()
        self._generation = 0
        self._invalidations = 0

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def snapshot(self) -> CacheSnapshot:
        return self._snapshot

    def _is_stale(self, snapshot: CacheSnapshot) -> bool:
        if snapshot.fetched_at is None or not snapshot.tasks:
            return True
        return self._clock() - snapshot.fetched_at > self._ttl

    async def get(self) -> List[TaskDefinition]:
        """Return cached tasks, refetching first if the snapshot is stale or empty."""
        if self._is_stale(self._snapshot):
            generation = self._generation
            async with self._refresh_lock:
                # skip if another caller refreshed while we waited
                if self._generation == generation or self._snapshot.fetched_at is None:
                    await self._fetch()
        return list(self._snapshot.tasks)

    async def refresh(self) -> List[TaskDefinition]:
        """Unconditionally refetch from the store."""
        async with self._refresh_lock:
            await self._fetch()
        return list(self._snapshot.tasks)

    def invalidate(self) -> None:
        self._invalidations += 1
        self._snapshot = CacheSnapshot(tasks=self._snapshot.tasks, fetched_at=None)

    def info(self) -> CacheInfo:
        snapshot = self._snapshot
        return CacheInfo(
            task_count=len(snapshot.tasks),
            fetched_at=snapshot.fetched_at,
            is_expired=snapshot.fetched_at is None or self._clock() - snapshot.fetched_at > self._ttl,
        )

    async def _fetch(self) -> None:
        invalidations = self._invalidations
        try:
            tasks = await self._store.fetch_enabled_tasks()
        except Exception:
            logger.exception("Failed to load enabled tasks; skipping this tick")
            self._snapshot = CacheSnapshot(tasks=(), fetched_at=self._clock())
            self._generation += 1
            return
        # an invalidation during the fetch means these rows may predate the change
        fresh = self._invalidations == invalidations
        self._snapshot = CacheSnapshot(
            tasks=tuple(task for task in tasks if task.enabled),
            fetched_at=self._clock() if fresh else None,
        )
        self._generation += 1
        logger.debug("Task cache refreshed with %d task(s)", len(self._snapshot.tasks))
