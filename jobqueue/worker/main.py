"""
Worker process for executing jobs.

The worker reserves jobs from its queues, executes them, and acknowledges
success or reports failure so the store can retry or dead-letter the job.
"""

import asyncio
import importlib
import logging
import os
import signal
import time
from collections.abc import Sequence

from jobqueue.config import get_settings
from jobqueue.constants import (
    SPAN_ACK_JOB,
    SPAN_EXECUTE_JOB,
    SPAN_FAIL_JOB,
    SPAN_RESERVE_JOB,
    JobStatus,
)
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import bind_context, setup_logging
from jobqueue.observability.metrics import get_metrics, start_metrics_server
from jobqueue.observability.tracing import get_tracer, setup_tracing
from jobqueue.queue import create_store
from jobqueue.queue.backoff import ExponentialBackoff, OutageBackoff
from jobqueue.queue.base import QueueStore, StoreUnavailableError
from jobqueue.queue.failed import DatabaseFailedJobProvider, FailedJobProvider
from jobqueue.types.job import Job, JobContext
from jobqueue.worker.handlers import execute_job

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that reserves and executes jobs.

    Features:
    - Exclusive, time-bounded reservations from the queue store
    - ``concurrency`` independent slots polling in parallel
    - Heartbeat to extend reservations of long-running jobs
    - Retry with exponential backoff, dead-lettering after max attempts
    - Backoff instead of crashing while the store is unreachable
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        store: QueueStore,
        failed_jobs: FailedJobProvider | None = None,
        queues: Sequence[str] | None = None,
        worker_id: str | None = None,
        concurrency: int | None = None,
        sleep_seconds: float | None = None,
        visibility_timeout: float | None = None,
        heartbeat_interval: float | None = None,
        retry_backoff: ExponentialBackoff | None = None,
        max_jobs: int | None = None,
        stop_when_empty: bool = False,
    ):
        """
        Initialize the worker.

        Args:
            store: Queue store to reserve jobs from.
            failed_jobs: Receives permanently failed jobs.
            queues: Queue names in priority order.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            concurrency: Number of jobs processed in parallel.
            sleep_seconds: Seconds between polls when the queues are empty.
            visibility_timeout: Reservation length before a job is reclaimable.
            heartbeat_interval: Seconds between reservation extensions.
            retry_backoff: Delay policy for retries.
            max_jobs: Stop after reserving this many jobs.
            stop_when_empty: Stop once no job is available.
        """
        settings = get_settings()

        self.store = store
        self.failed_jobs = failed_jobs
        self.queues = list(queues or settings.worker_queues)
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.concurrency = concurrency or settings.worker_concurrency
        self.sleep_seconds = (
            sleep_seconds if sleep_seconds is not None else settings.worker_sleep_seconds
        )
        self.visibility_timeout = (
            visibility_timeout or settings.worker_visibility_timeout_seconds
        )
        self.heartbeat_interval = (
            heartbeat_interval or settings.worker_heartbeat_interval_seconds
        )
        self.retry_backoff = retry_backoff or ExponentialBackoff(
            base=settings.retry_backoff_base_seconds,
            cap=settings.retry_backoff_cap_seconds,
        )
        self.max_jobs = max_jobs
        self.stop_when_empty = stop_when_empty

        self._connection_backoff = (
            settings.connection_backoff_base_seconds,
            settings.connection_backoff_cap_seconds,
        )
        self._running = False
        self._reserved_count = 0
        self._pending_reserves = 0
        self._current_jobs: dict[str, Job] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def reserved_count(self) -> int:
        """Number of jobs this worker has reserved since it started."""
        return self._reserved_count

    def reservation_owner(self, slot: int) -> str:
        """Owner token for reservations held by one slot of this worker."""
        return f"{self.worker_id}:{slot}"

    async def start(self) -> None:
        """Run the worker until stopped."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queues": self.queues,
                "concurrency": self.concurrency,
            }
        )

        self._running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        slots = [
            asyncio.create_task(self._slot_loop(slot))
            for slot in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*slots)
        finally:
            self._running = False
            for slot in slots:
                slot.cancel()
            if self._heartbeat_task:
                self._heartbeat_task.cancel()
                try:
                    await self._heartbeat_task
                except asyncio.CancelledError:
                    pass

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop reserving new jobs; in-flight jobs finish first."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def _slot_loop(self, slot: int) -> None:
        """Reserve and execute jobs one at a time until stopped."""
        outage = OutageBackoff(*self._connection_backoff)

        while self._running:
            try:
                processed = await self.process_next(slot)
            except StoreUnavailableError as e:
                delay = outage.failure()
                self._metrics.record_store_error("worker")
                logger.warning(
                    f"Queue store unavailable, retrying in {delay:.1f}s: {e}",
                    extra={"worker_id": self.worker_id, "slot": slot},
                )
                await asyncio.sleep(delay)
                continue
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id, "slot": slot}
                )
                await asyncio.sleep(self.sleep_seconds)
                continue

            outage.reset()

            if not processed:
                if self.stop_when_empty:
                    break
                await asyncio.sleep(self.sleep_seconds)

    async def process_next(self, slot: int = 0) -> bool:
        """
        Reserve and execute a single job.

        Args:
            slot: The slot reserving the job. Each slot holds its
                reservations under its own owner token.

        Returns:
            True if a job was reserved, False if none was available.

        Raises:
            StoreUnavailableError: If the queue store cannot be reached.
        """
        if self.max_jobs is not None:
            if self._reserved_count >= self.max_jobs:
                self._running = False
                return False
            # Reserves still awaiting the store count against the limit
            if self._reserved_count + self._pending_reserves >= self.max_jobs:
                return False

        owner = self.reservation_owner(slot)

        self._pending_reserves += 1
        try:
            with get_tracer().start_as_current_span(SPAN_RESERVE_JOB):
                job = await self.store.reserve(
                    self.queues,
                    worker_id=owner,
                    visibility_timeout=self.visibility_timeout,
                )
        finally:
            self._pending_reserves -= 1

        if job is None:
            return False

        self._reserved_count += 1
        self._metrics.record_job_reserved(self.worker_id)

        await self._execute_job(job, owner)
        return True

    async def _execute_job(self, job: Job, owner: str) -> None:
        """
        Execute a reserved job and report the outcome to the store.

        Args:
            job: The reserved job.
            owner: Owner token the reservation is held under.
        """
        start_time = time.monotonic()
        self._current_jobs[owner] = job

        try:
            context = JobContext(
                job_id=job.id,
                queue=job.queue,
                attempt=job.attempts + 1,
                max_attempts=job.max_attempts,
                payload=job.payload,
                worker_id=owner,
                reserved_until=job.reserved_until,
            )

            logger.info(
                "Executing job",
                extra={
                    "job_id": str(job.id),
                    "queue": job.queue,
                    "job_type": job.job_type,
                    "attempt": context.attempt,
                }
            )

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("queue", job.queue)
                span.set_attribute("attempt", context.attempt)

                result = await execute_job(context)

            duration = time.monotonic() - start_time

            if result.success:
                with get_tracer().start_as_current_span(SPAN_ACK_JOB):
                    acked = await self.store.ack(job.id, owner)

                if acked:
                    logger.info(
                        "Job completed successfully",
                        extra={"job_id": str(job.id), "duration": f"{duration:.2f}s"}
                    )
                else:
                    logger.warning(
                        "Job finished after its reservation was lost",
                        extra={"job_id": str(job.id)}
                    )
                self._metrics.record_job_processed(
                    queue=job.queue,
                    status=JobStatus.DONE.value,
                    duration_seconds=duration,
                )
            else:
                await self._handle_failure(
                    job,
                    owner,
                    error=result.error or "Unknown error",
                    duration=duration,
                )
        finally:
            self._current_jobs.pop(owner, None)

    async def _handle_failure(
        self, job: Job, owner: str, error: str, duration: float
    ) -> None:
        """Record a failed attempt; dead-letter the job if it is exhausted."""
        retry_delay = self.retry_backoff.delay(job.attempts + 1)

        with get_tracer().start_as_current_span(SPAN_FAIL_JOB):
            updated = await self.store.fail(
                job.id,
                owner,
                error=error,
                retry_delay=retry_delay,
            )

        if updated is None:
            logger.warning(
                "Job failed after its reservation was lost",
                extra={"job_id": str(job.id), "error": error}
            )
            return

        if updated.status == JobStatus.FAILED:
            logger.warning(
                f"Job permanently failed after {updated.attempts} attempts",
                extra={"job_id": str(job.id), "queue": job.queue, "error": error}
            )
            await self._report_failed(updated, error)
            status = JobStatus.FAILED.value
        else:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job.id),
                    "attempt": updated.attempts,
                    "retry_delay": retry_delay,
                    "error": error,
                }
            )
            status = "retried"

        self._metrics.record_job_processed(
            queue=job.queue,
            status=status,
            duration_seconds=duration,
        )

    async def _report_failed(self, job: Job, error: str) -> None:
        """Write the dead-letter record, backing off until the provider accepts it."""
        if self.failed_jobs is None:
            return

        outage = OutageBackoff(*self._connection_backoff)
        while True:
            try:
                await self.failed_jobs.log(job, error)
                return
            except Exception as e:
                delay = outage.failure()
                self._metrics.record_store_error("dead_letter")
                logger.warning(
                    f"Failed to record dead-letter entry, retrying in {delay:.1f}s: {e}",
                    extra={
                        "job_id": str(job.id),
                        "queue": job.queue,
                        "failures": outage.failures,
                    }
                )
                await asyncio.sleep(delay)

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend reservations on running jobs.

        This prevents jobs from being reclaimed while they're still being
        executed. It keeps running after ``stop()`` so draining jobs stay
        reserved; ``start()`` cancels it once every slot has returned.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for owner, job in list(self._current_jobs.items()):
                    extended = await self.store.extend(
                        job.id, owner, self.visibility_timeout
                    )
                    if not extended:
                        logger.warning(
                            "Could not extend reservation",
                            extra={"job_id": str(job.id), "owner": owner}
                        )

            except asyncio.CancelledError:
                break
            except StoreUnavailableError as e:
                self._metrics.record_store_error("heartbeat")
                logger.warning(f"Queue store unavailable during heartbeat: {e}")
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")


def load_modules(modules: Sequence[str]) -> None:
    """Import modules whose import registers handlers or scheduled tasks."""
    for module in modules:
        importlib.import_module(module)
        logger.info(f"Loaded module {module}")


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging("worker")
    setup_tracing()
    start_metrics_server(settings.prometheus_port)
    load_modules(settings.worker_handler_modules)
    await init_db()

    store = create_store(settings)
    worker = Worker(store, failed_jobs=DatabaseFailedJobProvider())
    bind_context(worker_id=worker.worker_id)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await store.close()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
