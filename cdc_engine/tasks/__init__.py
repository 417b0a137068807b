"""Scheduled tasks consuming stream cursors."""

from cdc_engine.tasks.models import ChangeBatch, PipelineRun, RunOutcome, Task, TaskStatus
from cdc_engine.tasks.retry import RetryPolicy
from cdc_engine.tasks.scheduler import TaskScheduler, TriggerResult, TriggerState

__all__ = [
    "ChangeBatch",
    "PipelineRun",
    "RetryPolicy",
    "RunOutcome",
    "Task",
    "TaskScheduler",
    "TaskStatus",
    "TriggerResult",
    "TriggerState",
]
