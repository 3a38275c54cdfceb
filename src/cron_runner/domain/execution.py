from datetime import datetime
from enum import IntEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

from .task import TaskDefinition, TaskProtocol

IN_PROGRESS = "in progress"


class ExecutionStatus(IntEnum):
    FAILED = 0
    RUNNING = 1
    SUCCEEDED = 2


class ExecutionResult(BaseModel):
    """
    Outcome of executing one task.
    """
    status: ExecutionStatus = Field(..., description="SUCCEEDED or FAILED")
    message: str = Field(default="", description="Success summary or error message")
    attempts: int = Field(default=1, ge=1, description="Number of executor attempts")
    retryable: bool = Field(default=True, description="Whether repeating the attempt could change the outcome")

    @classmethod
    def succeeded(cls, message: str) -> "ExecutionResult":
        return cls(status=ExecutionStatus.SUCCEEDED, message=message)

    @classmethod
    def failed(cls, message: str, retryable: bool = True) -> "ExecutionResult":
        return cls(status=ExecutionStatus.FAILED, message=message, retryable=retryable)

    @property
    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED


class TaskExecutionLog(BaseModel):
    """
    History row for a single dispatch of a task.

    Created with status RUNNING when the task is dispatched and completed
    exactly once when the execution settles.
    """
    id: Optional[int] = Field(default=None, description="Assigned by the store on insert")
    task_id: int
    name: str
    schedule: str = ""
    protocol: Union[TaskProtocol, int] = TaskProtocol.HTTP
    endpoint: str = ""
    timeout_seconds: int = 0
    retry_times: int = 0
    hostname: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING
    result: str = IN_PROGRESS
    started_at: datetime
    ended_at: Optional[datetime] = None

    @classmethod
    def start(cls, task: TaskDefinition, hostname: str, started_at: datetime) -> "TaskExecutionLog":
        return cls(
            task_id=task.id,
            name=task.name,
            schedule=task.schedule,
            protocol=task.protocol,
            endpoint=task.endpoint,
            timeout_seconds=task.timeout_seconds,
            retry_times=task.retry_times,
            hostname=hostname,
            started_at=started_at,
        )

    @property
    def is_finished(self) -> bool:
        return self.status != ExecutionStatus.RUNNING
