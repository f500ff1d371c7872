"""
Scheduler process.

Once per tick the scheduler evaluates every registered task against the
current minute and invokes the due ones, either inline as a background
task bounded by a timeout, or by pushing a job onto a queue.
"""

import asyncio
import logging
import signal
import time
from collections.abc import Callable
from datetime import datetime

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_RUN_SCHEDULED_TASK, SPAN_SCHEDULER_TICK, TaskOutcome
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer, setup_tracing
from jobqueue.queue import create_store
from jobqueue.queue.backoff import OutageBackoff
from jobqueue.queue.base import QueueStore, StoreUnavailableError
from jobqueue.queue.dispatcher import dispatch
from jobqueue.queue.failed import DatabaseFailedJobProvider
from jobqueue.queue.redis_store import RedisQueueStore
from jobqueue.scheduler.mutex import (
    InMemoryScheduleMutex,
    RedisScheduleMutex,
    ScheduleMutex,
)
from jobqueue.scheduler.schedule import Schedule, ScheduledTask, get_schedule
from jobqueue.scheduler.tasks import register_default_tasks
from jobqueue.scheduler.triggers import floor_to_minute
from jobqueue.types.job import utcnow
from jobqueue.worker.main import load_modules

logger = logging.getLogger(__name__)

# Tick claims only need to outlive the minute they guard
TICK_CLAIM_TTL_SECONDS = 3600


class Scheduler:
    """
    Evaluates a schedule on minute boundaries.

    Features:
    - Idempotent ticks keyed by each task's ``last_run_at``
    - Inline tasks run concurrently with later ticks, bounded by a timeout
    - Queue dispatch for tasks that should run on workers
    - ``without_overlapping`` and ``on_one_server`` through a shared mutex
    - Backoff instead of crashing while the store is unreachable
    """

    def __init__(
        self,
        schedule: Schedule,
        store: QueueStore,
        mutex: ScheduleMutex | None = None,
        tick_seconds: float | None = None,
        task_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()

        self.schedule = schedule
        self.store = store
        self.mutex = mutex or InMemoryScheduleMutex()
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self.task_timeout = task_timeout or settings.scheduler_task_timeout_seconds
        self._clock = clock
        self._outage = OutageBackoff(
            settings.connection_backoff_base_seconds,
            settings.connection_backoff_cap_seconds,
        )
        self._running = False
        self._stop_event = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self._metrics = get_metrics()

    @property
    def in_flight(self) -> int:
        """Number of inline task runs still executing."""
        return len(self._in_flight)

    async def tick(self, now: datetime | None = None) -> list[str]:
        """
        Evaluate the schedule for the minute containing ``now``.

        Args:
            now: Evaluation time. Defaults to the scheduler clock.

        Returns:
            Names of the tasks invoked by this tick.

        Raises:
            StoreUnavailableError: If a task could not be dispatched or
                claimed. Tasks not invoked stay due for a retried tick.
        """
        tick = floor_to_minute(now or self._clock())
        invoked: list[str] = []
        store_error: StoreUnavailableError | None = None

        with get_tracer().start_as_current_span(SPAN_SCHEDULER_TICK) as span:
            span.set_attribute("tick", tick.isoformat())

            for task in self.schedule:
                if task.has_run_for(tick) or not task.is_due(tick):
                    continue
                try:
                    if await self._invoke(task, tick):
                        invoked.append(task.name)
                except StoreUnavailableError as e:
                    store_error = e
                    logger.warning(
                        "Scheduled task deferred, store unavailable",
                        extra={"task": task.name, "error": str(e)}
                    )

        if store_error is not None:
            raise store_error
        return invoked

    async def _invoke(self, task: ScheduledTask, tick: datetime) -> bool:
        if task.on_one_server and not await self.mutex.claim_tick(
            task.name, tick, TICK_CLAIM_TTL_SECONDS
        ):
            task.last_run_at = tick
            self._metrics.record_scheduled_run(task.name, TaskOutcome.SKIPPED.value)
            logger.debug(
                "Task already claimed by another scheduler",
                extra={"task": task.name}
            )
            return False

        if task.dispatches:
            job = await dispatch(
                self.store,
                job_type=task.job_type,
                data=task.data,
                queue=task.queue,
            )
            task.last_run_at = tick
            self._metrics.record_scheduled_run(task.name, TaskOutcome.DISPATCHED.value)
            logger.info(
                "Dispatched scheduled job",
                extra={"task": task.name, "job_id": str(job.id), "queue": task.queue}
            )
            return True

        timeout = task.timeout_seconds or self.task_timeout

        if task.without_overlapping and not await self.mutex.acquire(
            task.name, int(timeout) + 60
        ):
            task.last_run_at = tick
            self._metrics.record_scheduled_run(task.name, TaskOutcome.SKIPPED.value)
            logger.info(
                "Skipping task, previous run still in progress",
                extra={"task": task.name}
            )
            return False

        task.last_run_at = tick
        run = asyncio.create_task(self._run_inline(task, timeout), name=task.name)
        self._in_flight.add(run)
        run.add_done_callback(self._in_flight.discard)
        return True

    async def _run_inline(self, task: ScheduledTask, timeout: float) -> None:
        start_time = time.monotonic()
        outcome = TaskOutcome.SUCCEEDED

        try:
            with get_tracer().start_as_current_span(SPAN_RUN_SCHEDULED_TASK) as span:
                span.set_attribute("task", task.name)
                await asyncio.wait_for(task.handler(), timeout=timeout)
        except asyncio.TimeoutError:
            outcome = TaskOutcome.TIMED_OUT
            logger.error(
                f"Scheduled task timed out after {timeout}s",
                extra={"task": task.name}
            )
        except Exception as e:
            outcome = TaskOutcome.FAILED
            logger.exception(
                f"Scheduled task failed: {e}",
                extra={"task": task.name}
            )
        finally:
            if task.without_overlapping:
                await self._release(task)

        duration = time.monotonic() - start_time
        self._metrics.record_scheduled_run(task.name, outcome.value, duration)
        if outcome == TaskOutcome.SUCCEEDED:
            logger.info(
                "Scheduled task finished",
                extra={"task": task.name, "duration": f"{duration:.2f}s"}
            )

    async def _release(self, task: ScheduledTask) -> None:
        try:
            await self.mutex.release(task.name)
        except StoreUnavailableError as e:
            # The lock expires on its own
            logger.warning(
                f"Could not release task lock: {e}",
                extra={"task": task.name}
            )

    async def drain(self) -> None:
        """Wait for in-flight inline tasks to finish."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def seconds_until_next_tick(self) -> float:
        now = self._clock().timestamp()
        return self.tick_seconds - (now % self.tick_seconds)

    async def start(self) -> None:
        """Run ticks on every boundary until stopped."""
        logger.info(
            "Scheduler starting",
            extra={
                "tasks": [t.name for t in self.schedule],
                "tick_seconds": self.tick_seconds,
            }
        )
        for task in self.schedule:
            logger.info(
                "Registered scheduled task",
                extra={
                    "task": task.name,
                    "crontab": task.trigger.crontab,
                    "next_run": str(task.trigger.next_after(self._clock())),
                }
            )

        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                invoked = await self.tick()
                self._outage.reset()
                if invoked:
                    logger.debug("Tick complete", extra={"invoked": invoked})
                delay = self.seconds_until_next_tick()
            except StoreUnavailableError as e:
                delay = self._outage.failure()
                self._metrics.record_store_error("scheduler")
                logger.warning(f"Queue store unavailable, retrying in {delay:.1f}s: {e}")
            except Exception as e:
                logger.exception(f"Error in scheduler loop: {e}")
                delay = self.seconds_until_next_tick()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        await self.drain()
        logger.info("Scheduler stopped")

    async def stop(self) -> None:
        """Stop ticking; in-flight inline tasks finish first."""
        logger.info("Scheduler stopping")
        self._running = False
        self._stop_event.set()


def create_mutex(store: QueueStore) -> ScheduleMutex:
    """Use the queue store's Redis server for locks when there is one."""
    if isinstance(store, RedisQueueStore):
        return RedisScheduleMutex(store.client, prefix=store.prefix)
    return InMemoryScheduleMutex()


async def run_async() -> None:
    """Run the scheduler asynchronously."""
    settings = get_settings()
    setup_logging("scheduler")

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled by configuration")
        return

    setup_tracing()
    load_modules(settings.worker_handler_modules)
    if settings.scheduler_schedule_module:
        load_modules([settings.scheduler_schedule_module])
    await init_db()

    store = create_store(settings)
    schedule = get_schedule()
    register_default_tasks(
        schedule,
        store,
        DatabaseFailedJobProvider(),
        queues=settings.worker_queues,
        retention_hours=settings.failed_job_retention_hours,
    )
    scheduler = Scheduler(schedule, store, mutex=create_mutex(store))

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(scheduler.stop())
        )

    try:
        await scheduler.start()
    finally:
        await store.close()
        await close_db()


def run() -> None:
    """Run the scheduler."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
