import asyncio
import logging
from typing import Dict, Optional

from cron_runner.domain.task import TaskDefinition, TaskProtocol
from cron_runner.domain.execution import ExecutionResult
from cron_runner.executors.http import HttpTaskExecutor
from cron_runner.executors.protocol import ProtocolExecutor
from cron_runner.executors.unimplemented import UnimplementedProtocolExecutor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60
UNSUPPORTED_PROTOCOL = "unsupported protocol type"


class TaskExecutor:
    """
    Dispatches a task to the executor registered for its protocol.

    ``execute`` never raises: every failure path, including a misbehaving
    protocol executor, resolves to a FAILED ``ExecutionResult``. Failed
    attempts are retried up to ``task.retry_times`` times, waiting
    ``task.retry_interval_seconds`` between attempts.
    """
    def __init__(self, default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS):
        self.default_timeout_seconds: int = default_timeout_seconds
        self._executors: Dict[TaskProtocol, ProtocolExecutor] = {}

    @classmethod
    def with_defaults(cls, default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> "TaskExecutor":
        executor = cls(default_timeout_seconds)
        executor.register(TaskProtocol.HTTP, HttpTaskExecutor())
        executor.register(TaskProtocol.SSH, UnimplementedProtocolExecutor())
        executor.register(TaskProtocol.LOCAL, UnimplementedProtocolExecutor())
        return executor

    @property
    def supported_protocols(self) -> Dict[TaskProtocol, ProtocolExecutor]:
        return dict(self._executors)

    def register(self, protocol: TaskProtocol, executor: ProtocolExecutor) -> None:
        """
        Register the executor handling one protocol.

        Raises:
            ValueError: If the protocol is unknown or already has an executor.
        """
        if not isinstance(protocol, TaskProtocol):
            raise ValueError(f"Protocol '{protocol}' is not supported")
        if protocol in self._executors:
            raise ValueError(f"An executor for protocol '{protocol.name}' is already registered")
        self._executors[protocol] = executor

    def get_executor(self, protocol) -> Optional[ProtocolExecutor]:
        return self._executors.get(protocol)

    async def _attempt(self, executor: ProtocolExecutor, task: TaskDefinition) -> ExecutionResult:
        try:
            return await executor.async_execute(task, task.effective_timeout(self.default_timeout_seconds))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Executor for task %s raised", task.id)
            return ExecutionResult.failed(f"Unexpected error: {str(e)}")

    async def execute(self, task: TaskDefinition) -> ExecutionResult:
        """
        Execute the task once, plus retries on failure.

        Args:
            task (TaskDefinition): The task to be executed.

        Returns:
            ExecutionResult: The final outcome, with ``attempts`` set.
        """
        executor = self.get_executor(task.protocol)
        if executor is None:
            return ExecutionResult.failed(UNSUPPORTED_PROTOCOL, retryable=False)

        attempts = 0
        while True:
            attempts += 1
            result = await self._attempt(executor, task)
            if result.is_success or not result.retryable or attempts > task.retry_times:
                return result.model_copy(update={"attempts": attempts})
            logger.info(
                "Task %s (%s) failed on attempt %d: %s; retrying in %ds",
                task.id, task.name, attempts, result.message, task.retry_interval_seconds,
            )
            if task.retry_interval_seconds > 0:
                await asyncio.sleep(task.retry_interval_seconds)
