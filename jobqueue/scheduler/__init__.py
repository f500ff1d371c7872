"""
Scheduler module.
Evaluates time-triggered tasks and runs or dispatches the due ones.
"""

from jobqueue.scheduler.main import Scheduler, create_mutex, run
from jobqueue.scheduler.mutex import (
    InMemoryScheduleMutex,
    RedisScheduleMutex,
    ScheduleMutex,
)
from jobqueue.scheduler.schedule import Schedule, ScheduledTask, get_schedule, scheduled
from jobqueue.scheduler.tasks import register_default_tasks
from jobqueue.scheduler.triggers import InvalidTriggerError, Trigger, to_crontab

__all__ = [
    "Scheduler",
    "Schedule",
    "ScheduledTask",
    "ScheduleMutex",
    "InMemoryScheduleMutex",
    "RedisScheduleMutex",
    "Trigger",
    "InvalidTriggerError",
    "to_crontab",
    "get_schedule",
    "scheduled",
    "register_default_tasks",
    "create_mutex",
    "run",
]
