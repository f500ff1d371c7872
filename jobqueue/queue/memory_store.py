"""
In-process queue store.

Keeps all state in dictionaries guarded by a single asyncio lock. Suitable
for tests and single-process development; state is lost on exit.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from jobqueue.constants import JobStatus
from jobqueue.queue.base import QueueSize, QueueStore
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)


class InMemoryQueueStore(QueueStore):
    """
    Queue store backed by in-process data structures.

    Args:
        clock: Returns the current aware datetime. Injectable for tests.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._jobs: dict[UUID, Job] = {}
        self._pending: dict[str, list[UUID]] = {}
        self._reserved: dict[str, set[UUID]] = {}
        self._failed: dict[str, list[UUID]] = {}

    async def push(
        self,
        queue: str,
        payload: dict[str, Any],
        max_attempts: int = 3,
        delay_seconds: float = 0,
    ) -> Job:
        now = self._clock()
        job = Job(
            id=uuid4(),
            queue=queue,
            payload=payload,
            max_attempts=max_attempts,
            enqueued_at=now,
            available_at=now + timedelta(seconds=delay_seconds),
        )
        async with self._lock:
            self._jobs[job.id] = job
            self._pending.setdefault(queue, []).append(job.id)
        return job.model_copy(deep=True)

    async def reserve(
        self,
        queues: Sequence[str],
        worker_id: str,
        visibility_timeout: float,
    ) -> Job | None:
        async with self._lock:
            now = self._clock()
            for queue in queues:
                self._reclaim(queue, now)
                pending = self._pending.get(queue, [])
                for index, job_id in enumerate(pending):
                    job = self._jobs[job_id]
                    if job.available_at > now:
                        continue
                    del pending[index]
                    job.status = JobStatus.RESERVED
                    job.reserved_by = worker_id
                    job.reserved_until = now + timedelta(seconds=visibility_timeout)
                    self._reserved.setdefault(queue, set()).add(job_id)
                    return job.model_copy(deep=True)
        return None

    async def ack(self, job_id: UUID, worker_id: str) -> bool:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return False
            self._reserved[job.queue].discard(job_id)
            del self._jobs[job_id]
            return True

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        retry_delay: float = 0,
    ) -> Job | None:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return None
            now = self._clock()
            self._reserved[job.queue].discard(job_id)
            job.attempts += 1
            job.last_error = error
            job.reserved_by = None
            job.reserved_until = None
            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED
                self._failed.setdefault(job.queue, []).append(job_id)
            else:
                job.status = JobStatus.PENDING
                job.available_at = now + timedelta(seconds=retry_delay)
                self._pending.setdefault(job.queue, []).append(job_id)
            return job.model_copy(deep=True)

    async def release(
        self,
        job_id: UUID,
        worker_id: str,
        delay_seconds: float = 0,
    ) -> Job | None:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return None
            self._reserved[job.queue].discard(job_id)
            self._make_pending(job, self._clock() + timedelta(seconds=delay_seconds))
            return job.model_copy(deep=True)

    async def extend(
        self,
        job_id: UUID,
        worker_id: str,
        visibility_timeout: float,
    ) -> bool:
        async with self._lock:
            job = self._owned(job_id, worker_id)
            if job is None:
                return False
            job.reserved_until = self._clock() + timedelta(seconds=visibility_timeout)
            return True

    async def reclaim_expired(self, queue: str) -> int:
        async with self._lock:
            return self._reclaim(queue, self._clock())

    async def get(self, job_id: UUID) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def size(self, queue: str) -> QueueSize:
        async with self._lock:
            now = self._clock()
            result = QueueSize(queue=queue)
            for job_id in self._pending.get(queue, []):
                if self._jobs[job_id].available_at > now:
                    result.delayed += 1
                else:
                    result.pending += 1
            result.reserved = len(self._reserved.get(queue, ()))
            result.failed = len(self._failed.get(queue, ()))
            return result

    async def ping(self) -> bool:
        return True

    def _owned(self, job_id: UUID, worker_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RESERVED or job.reserved_by != worker_id:
            logger.warning(
                "Worker doesn't hold job reservation",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None
        return job

    def _make_pending(self, job: Job, available_at: datetime) -> None:
        job.status = JobStatus.PENDING
        job.reserved_by = None
        job.reserved_until = None
        job.available_at = available_at
        self._pending.setdefault(job.queue, []).append(job.id)

    def _reclaim(self, queue: str, now: datetime) -> int:
        reserved = self._reserved.get(queue)
        if not reserved:
            return 0
        expired = [
            job_id
            for job_id in reserved
            if self._jobs[job_id].reserved_until is not None
            and self._jobs[job_id].reserved_until <= now
        ]
        # Oldest first so reclaimed jobs keep their relative order
        expired.sort(key=lambda job_id: self._jobs[job_id].enqueued_at)
        for job_id in expired:
            reserved.discard(job_id)
            self._make_pending(self._jobs[job_id], now)
        if expired:
            logger.info(
                f"Reclaimed {len(expired)} expired reservations",
                extra={"queue": queue},
            )
        return len(expired)
