from typing import Protocol

from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionResult


class ProtocolExecutor(Protocol):
    """
    Protocol class for per-protocol task executors.
    """

    async def async_execute(self, task: TaskDefinition, timeout_seconds: int) -> ExecutionResult:
        """
        Perform the task's action once and classify the outcome.

        Args:
            task (TaskDefinition): The task to be executed.
            timeout_seconds (int): Hard deadline for the action.
        """
        ...
