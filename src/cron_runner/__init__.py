"""
Cron Task Runner

This module defines the core concepts and components of the cron task runner.

Core Concepts:

Task:
    A TaskDefinition describes an HTTP-callable action and the cron expression
    that says when it should run. Tasks are created and edited elsewhere; the
    scheduler only reads the enabled ones.

Tick:
    A tick is one scheduling pass, fired by an external periodic timer. On each
    tick every enabled task is checked against its schedule, and the tasks that
    are due and not already running are executed concurrently.

Execution Log:
    A TaskExecutionLog records a single run of a Task. It is written as
    RUNNING when the task is dispatched and completed exactly once with the
    final status and result.

Relationships:
    - A Task can have many Execution Logs, one per dispatch.
    - A Task has at most one run in flight at any moment.
"""

from .cron import CronSchedule, ScheduleParseError, parse, is_due, previous_fire_time, next_fire_time
from .domain import TaskDefinition, TaskProtocol, HttpMethod, ExecutionStatus, ExecutionResult, TaskExecutionLog
from .cache import TaskCache
from .executor_factory import TaskExecutor
from .scheduler import SchedulerState, SchedulerLoop, PeriodicTrigger

__all__ = [
    "CronSchedule",
    "ScheduleParseError",
    "parse",
    "is_due",
    "previous_fire_time",
    "next_fire_time",
    "TaskDefinition",
    "TaskProtocol",
    "HttpMethod",
    "ExecutionStatus",
    "ExecutionResult",
    "TaskExecutionLog",
    "TaskCache",
    "TaskExecutor",
    "SchedulerState",
    "SchedulerLoop",
    "PeriodicTrigger",
]
