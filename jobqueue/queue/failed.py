"""
Dead-letter handling for permanently failed jobs.

Workers report jobs that exhausted their attempts to a FailedJobProvider so
operators can inspect, retry or discard them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID, uuid4

from jobqueue.db import FailedJobRepository, get_session_context
from jobqueue.queue.base import QueueStore
from jobqueue.types.job import FailedJobRecord, Job, utcnow

logger = logging.getLogger(__name__)


class FailedJobProvider(ABC):
    """Storage for dead-letter records."""

    @abstractmethod
    async def log(self, job: Job, exception: str) -> FailedJobRecord:
        """Record a permanently failed job. Repeated reports are idempotent."""

    @abstractmethod
    async def all(
        self,
        queue: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[FailedJobRecord], int]:
        """List records newest first, with the total count."""

    @abstractmethod
    async def find(self, failed_job_id: UUID) -> FailedJobRecord | None:
        """Get a record by ID."""

    @abstractmethod
    async def forget(self, failed_job_id: UUID) -> bool:
        """Delete a record."""

    @abstractmethod
    async def flush(self, queue: str | None = None) -> int:
        """Delete all records, optionally for one queue."""

    @abstractmethod
    async def prune(self, before: datetime) -> int:
        """Delete records that failed before ``before``."""


class InMemoryFailedJobProvider(FailedJobProvider):
    """Failed job provider for tests and single-process development."""

    def __init__(self) -> None:
        self._records: dict[UUID, FailedJobRecord] = {}

    async def log(self, job: Job, exception: str) -> FailedJobRecord:
        for record in self._records.values():
            if record.job_id == job.id:
                return record
        record = FailedJobRecord(
            id=uuid4(),
            job_id=job.id,
            queue=job.queue,
            payload=job.payload,
            attempts=job.attempts,
            exception=exception,
            failed_at=utcnow(),
        )
        self._records[record.id] = record
        return record

    async def all(
        self,
        queue: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[FailedJobRecord], int]:
        records = [
            r for r in self._records.values() if queue is None or r.queue == queue
        ]
        records.sort(key=lambda r: r.failed_at, reverse=True)
        return records[offset : offset + limit], len(records)

    async def find(self, failed_job_id: UUID) -> FailedJobRecord | None:
        return self._records.get(failed_job_id)

    async def forget(self, failed_job_id: UUID) -> bool:
        return self._records.pop(failed_job_id, None) is not None

    async def flush(self, queue: str | None = None) -> int:
        doomed = [
            r.id for r in self._records.values() if queue is None or r.queue == queue
        ]
        for record_id in doomed:
            del self._records[record_id]
        return len(doomed)

    async def prune(self, before: datetime) -> int:
        doomed = [r.id for r in self._records.values() if r.failed_at < before]
        for record_id in doomed:
            del self._records[record_id]
        return len(doomed)


class DatabaseFailedJobProvider(FailedJobProvider):
    """
    Failed job provider backed by the failed_jobs table.

    Requires ``jobqueue.db.init_db()`` to have been awaited.
    """

    async def log(self, job: Job, exception: str) -> FailedJobRecord:
        async with get_session_context() as session:
            failed, _ = await FailedJobRepository(session).record(job, exception)
            return FailedJobRecord.model_validate(failed)

    async def all(
        self,
        queue: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[FailedJobRecord], int]:
        async with get_session_context() as session:
            rows, total = await FailedJobRepository(session).list_failed(
                queue=queue, limit=limit, offset=offset
            )
            return [FailedJobRecord.model_validate(row) for row in rows], total

    async def find(self, failed_job_id: UUID) -> FailedJobRecord | None:
        async with get_session_context() as session:
            row = await FailedJobRepository(session).get(failed_job_id)
            return FailedJobRecord.model_validate(row) if row else None

    async def forget(self, failed_job_id: UUID) -> bool:
        async with get_session_context() as session:
            return await FailedJobRepository(session).forget(failed_job_id)

    async def flush(self, queue: str | None = None) -> int:
        async with get_session_context() as session:
            return await FailedJobRepository(session).flush(queue)

    async def prune(self, before: datetime) -> int:
        async with get_session_context() as session:
            return await FailedJobRepository(session).prune(before)


async def retry_failed_job(
    store: QueueStore,
    provider: FailedJobProvider,
    failed_job_id: UUID,
    max_attempts: int | None = None,
) -> Job | None:
    """
    Push a dead-lettered job back onto its queue with fresh attempts.

    The record is forgotten once the new job is enqueued.

    Returns:
        The newly pushed job, or None if the record does not exist.
    """
    record = await provider.find(failed_job_id)
    if record is None:
        return None

    job = await store.push(
        queue=record.queue,
        payload=record.payload,
        max_attempts=max_attempts or max(record.attempts, 1),
    )
    await provider.forget(failed_job_id)

    logger.info(
        "Failed job pushed back onto queue",
        extra={
            "failed_job_id": str(failed_job_id),
            "job_id": str(job.id),
            "queue": record.queue,
        },
    )
    return job
