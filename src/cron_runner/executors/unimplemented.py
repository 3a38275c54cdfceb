from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionResult
from cron_runner.executors.protocol import ProtocolExecutor

PROTOCOL_NOT_IMPLEMENTED = "protocol not implemented"


class UnimplementedProtocolExecutor(ProtocolExecutor):
    """
    Placeholder for protocols that are declared but not supported (SSH, LOCAL).
    """

    async def async_execute(self, task: TaskDefinition, timeout_seconds: int) -> ExecutionResult:
        return ExecutionResult.failed(PROTOCOL_NOT_IMPLEMENTED, retryable=False)
