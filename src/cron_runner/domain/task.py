from enum import IntEnum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator


class TaskProtocol(IntEnum):
    HTTP = 1
    SSH = 2
    LOCAL = 3


class HttpMethod(IntEnum):
    GET = 1
    POST = 2
    PUT = 3
    DELETE = 4

    @property
    def carries_body(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.DELETE)


class TaskDefinition(BaseModel):
    """
    Read-only snapshot of a task as the scheduler sees it.
    """
    id: int = Field(..., description="Unique task identifier")
    name: str = Field(..., description="Display label used in logs")
    schedule: str = Field(default="", description="5-field or 6-field cron expression")
    protocol: Union[TaskProtocol, int] = Field(default=TaskProtocol.HTTP, description="How the task is executed")
    endpoint: str = Field(default="", description="Target URL for HTTP, command string for other protocols")
    http_method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method used for HTTP tasks")
    timeout_seconds: int = Field(default=0, ge=0, description="Execution deadline, 0 means the configured default")
    retry_times: int = Field(default=0, ge=0, description="Extra attempts after a failed execution")
    retry_interval_seconds: int = Field(default=0, ge=0, description="Pause between retry attempts")
    request_headers: Optional[str] = Field(default=None, description="JSON object of request headers")
    request_body: Optional[str] = Field(default=None, description="Raw request body")
    enabled: bool = Field(default=True, description="Only enabled tasks are scheduled")

    model_config = {"frozen": True}

    @field_validator("protocol", mode="before")
    @classmethod
    def keep_unknown_protocol(cls, v):
        # unknown values stay plain ints so execution can report them
        try:
            return TaskProtocol(int(v))
        except (TypeError, ValueError):
            return v

    @field_validator("http_method", mode="before")
    @classmethod
    def default_unknown_method(cls, v):
        if isinstance(v, str):
            return HttpMethod[v.upper()] if v.upper() in HttpMethod.__members__ else HttpMethod.GET
        try:
            return HttpMethod(int(v))
        except (TypeError, ValueError):
            return HttpMethod.GET

    @field_validator("timeout_seconds", "retry_times", "retry_interval_seconds", mode="before")
    @classmethod
    def none_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("schedule", mode="before")
    @classmethod
    def strip_schedule(cls, v):
        return (v or "").strip()

    @property
    def is_http(self) -> bool:
        return self.protocol == TaskProtocol.HTTP

    def effective_timeout(self, default: int) -> int:
        return self.timeout_seconds if self.timeout_seconds > 0 else default
