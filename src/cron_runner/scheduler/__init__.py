from .state import InFlightSet, SchedulerState
from .loop import SchedulerLoop, TaskOutcome, TickSummary
from .trigger import PeriodicTrigger

__all__ = ["InFlightSet", "SchedulerState", "SchedulerLoop", "TaskOutcome", "TickSummary", "PeriodicTrigger"]
