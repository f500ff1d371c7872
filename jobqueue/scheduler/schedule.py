"""
Scheduled task definitions and the schedule registry.

Tasks are either called inline by the scheduler process (``Schedule.call``)
or pushed onto a queue for a worker to run (``Schedule.job``).
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from jobqueue.config import get_settings
from jobqueue.constants import DEFAULT_QUEUE
from jobqueue.scheduler.triggers import Trigger

logger = logging.getLogger(__name__)

TaskHandler = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    """
    A task evaluated by the scheduler on every tick.

    Exactly one of ``handler`` and ``job_type`` is set.
    """

    name: str
    trigger: Trigger
    handler: TaskHandler | None = None
    job_type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    queue: str = DEFAULT_QUEUE
    timeout_seconds: float | None = None
    without_overlapping: bool = False
    on_one_server: bool = False
    last_run_at: datetime | None = None

    def __post_init__(self) -> None:
        if (self.handler is None) == (self.job_type is None):
            raise ValueError(
                f"Scheduled task {self.name!r} needs exactly one of handler or job_type"
            )

    @property
    def dispatches(self) -> bool:
        """True when the task pushes a job instead of running inline."""
        return self.job_type is not None

    def is_due(self, tick: datetime) -> bool:
        return self.trigger.is_due(tick)

    def has_run_for(self, tick: datetime) -> bool:
        """Whether the task was already invoked for ``tick`` or a later one."""
        return self.last_run_at is not None and self.last_run_at >= tick

    # Fluent modifiers

    def timeout(self, seconds: float) -> "ScheduledTask":
        self.timeout_seconds = seconds
        return self

    def no_overlap(self) -> "ScheduledTask":
        self.without_overlapping = True
        return self

    def one_server(self) -> "ScheduledTask":
        self.on_one_server = True
        return self


class Schedule:
    """
    Registry of scheduled tasks.

    Example:
        schedule = Schedule()
        schedule.call(send_digest, "daily at 08:00", name="send-digest")
        schedule.job("echo", "every 5 minutes", data={"ping": True})
    """

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._tasks: dict[str, ScheduledTask] = {}

    def call(
        self,
        handler: TaskHandler,
        trigger: str,
        name: str | None = None,
        timeout_seconds: float | None = None,
        without_overlapping: bool = False,
        on_one_server: bool = False,
    ) -> ScheduledTask:
        """
        Run ``handler`` inside the scheduler process when ``trigger`` is due.

        Args:
            handler: Coroutine function taking no arguments.
            trigger: Crontab expression or phrase.
            name: Unique task name. Defaults to the handler's qualified name.
            timeout_seconds: Per-run timeout. Defaults to the scheduler's.
            without_overlapping: Skip a run while the previous one is still going.
            on_one_server: Run on only one scheduler instance per tick.

        Returns:
            The registered task.
        """
        task = ScheduledTask(
            name=name or f"{handler.__module__}.{handler.__qualname__}",
            trigger=Trigger(trigger, timezone=self.timezone),
            handler=handler,
            timeout_seconds=timeout_seconds,
            without_overlapping=without_overlapping,
            on_one_server=on_one_server,
        )
        return self.add(task)

    def job(
        self,
        job_type: str,
        trigger: str,
        data: dict[str, Any] | None = None,
        queue: str = DEFAULT_QUEUE,
        name: str | None = None,
        on_one_server: bool = False,
    ) -> ScheduledTask:
        """
        Push a ``job_type`` job onto ``queue`` when ``trigger`` is due.

        Returns:
            The registered task.
        """
        task = ScheduledTask(
            name=name or f"{queue}:{job_type}",
            trigger=Trigger(trigger, timezone=self.timezone),
            job_type=job_type,
            data=data or {},
            queue=queue,
            on_one_server=on_one_server,
        )
        return self.add(task)

    def add(self, task: ScheduledTask) -> ScheduledTask:
        if task.name in self._tasks:
            raise ValueError(f"Scheduled task already registered: {task.name}")
        self._tasks[task.name] = task
        logger.debug(f"Scheduled {task.name} ({task.trigger.crontab})")
        return task

    def remove(self, name: str) -> None:
        self._tasks.pop(name, None)

    def get(self, name: str) -> ScheduledTask | None:
        return self._tasks.get(name)

    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    def __iter__(self) -> Iterator[ScheduledTask]:
        return iter(list(self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)


_schedule: Schedule | None = None


def get_schedule() -> Schedule:
    """Get the process-wide default schedule, creating it on first use."""
    global _schedule
    if _schedule is None:
        _schedule = Schedule(timezone=get_settings().scheduler_timezone)
    return _schedule


def scheduled(
    trigger: str,
    name: str | None = None,
    **options: Any,
) -> Callable[[TaskHandler], TaskHandler]:
    """
    Decorator registering a coroutine function on the default schedule.

    Example:
        @scheduled("every 5 minutes", without_overlapping=True)
        async def refresh_cache() -> None:
            ...
    """
    def decorator(handler: TaskHandler) -> TaskHandler:
        get_schedule().call(handler, trigger, name=name, **options)
        return handler
    return decorator
