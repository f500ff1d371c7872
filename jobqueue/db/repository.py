"""
Failed job repository for database operations.
"""

import logging
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import FailedJob
from jobqueue.types.job import Job, utcnow

logger = logging.getLogger(__name__)


class FailedJobRepository:
    """
    Repository for the failed_jobs table.

    Implements:
    - Idempotent recording of permanently failed jobs
    - Lookup and paginated listing for operators
    - Removal (forget, flush, prune)
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def record(self, job: Job, exception: str) -> tuple[FailedJob, bool]:
        """
        Record a permanently failed job.

        Args:
            job: The failed job snapshot.
            exception: Error description from the last attempt.

        Returns:
            Tuple of (FailedJob, created) where created is False if the job
            had already been recorded.
        """
        existing = await self.get_by_job_id(job.id)
        if existing is not None:
            logger.info(
                "Failed job already recorded",
                extra={"job_id": str(job.id), "failed_job_id": str(existing.id)},
            )
            return existing, False

        failed = FailedJob(
            job_id=job.id,
            queue=job.queue,
            payload=job.payload,
            attempts=job.attempts,
            exception=exception,
            failed_at=utcnow(),
        )
        self._session.add(failed)
        await self._session.flush()

        logger.info(
            "Recorded failed job",
            extra={"job_id": str(job.id), "failed_job_id": str(failed.id), "queue": job.queue},
        )
        return failed, True

    async def get(self, failed_job_id: UUID) -> FailedJob | None:
        """
        Get a failed job record by ID.

        Args:
            failed_job_id: The record UUID.

        Returns:
            The FailedJob or None if not found.
        """
        stmt = select(FailedJob).where(FailedJob.id == failed_job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_job_id(self, job_id: UUID) -> FailedJob | None:
        """Get the failed job record for a queue job ID."""
        stmt = select(FailedJob).where(FailedJob.job_id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_failed(
        self,
        queue: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[FailedJob], int]:
        """
        List failed jobs, newest first.

        Args:
            queue: Optional queue filter.
            limit: Maximum number of records to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (records, total_count).
        """
        filters = []
        if queue is not None:
            filters.append(FailedJob.queue == queue)

        count_stmt = select(func.count()).select_from(FailedJob).where(*filters)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(FailedJob)
            .where(*filters)
            .order_by(FailedJob.failed_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def forget(self, failed_job_id: UUID) -> bool:
        """
        Delete a failed job record.

        Returns:
            True if a record was deleted.
        """
        stmt = delete(FailedJob).where(FailedJob.id == failed_job_id)
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def flush(self, queue: str | None = None) -> int:
        """
        Delete all failed job records, optionally for one queue.

        Returns:
            Number of deleted records.
        """
        stmt = delete(FailedJob)
        if queue is not None:
            stmt = stmt.where(FailedJob.queue == queue)
        result = await self._session.execute(stmt)
        count = result.rowcount
        if count > 0:
            logger.info(f"Flushed {count} failed jobs", extra={"queue": queue})
        return count

    async def prune(self, before: datetime) -> int:
        """
        Delete failed job records older than ``before``.

        Returns:
            Number of deleted records.
        """
        stmt = delete(FailedJob).where(FailedJob.failed_at < before)
        result = await self._session.execute(stmt)
        count = result.rowcount
        if count > 0:
            logger.info(f"Pruned {count} failed jobs")
        return count
