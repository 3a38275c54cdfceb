from .task import TaskDefinition, TaskProtocol, HttpMethod
from .execution import ExecutionStatus, ExecutionResult, TaskExecutionLog, IN_PROGRESS

__all__ = [
    "TaskDefinition",
    "TaskProtocol",
    "HttpMethod",
    "ExecutionStatus",
    "ExecutionResult",
    "TaskExecutionLog",
    "IN_PROGRESS",
]