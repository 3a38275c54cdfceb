from datetime import datetime
from typing import List, Protocol

from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionStatus, TaskExecutionLog


class TaskStore(Protocol):
    async def fetch_enabled_tasks(self) -> List[TaskDefinition]:
        """Return every enabled task. Order is not meaningful."""
        ...

    async def insert_execution_log(self, entry: TaskExecutionLog) -> int:
        """Persist a new execution log row and return its ID."""
        ...

    async def update_execution_log(self, log_id: int, status: ExecutionStatus, result: str, ended_at: datetime) -> bool:
        """Complete an execution log row. Return True if the row existed, False otherwise."""
        ...
