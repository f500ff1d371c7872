"""
Dead-letter (failed job) routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from jobqueue.api.dependencies import FailedJobs, Store
from jobqueue.constants import API_V1_PREFIX
from jobqueue.queue.failed import retry_failed_job
from jobqueue.types.api import (
    FailedJobListResponse,
    FailedJobResponse,
    RetryFailedJobResponse,
)
from jobqueue.types.job import FailedJobRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/failed-jobs", tags=["Failed jobs"])


def _record_to_response(record: FailedJobRecord) -> FailedJobResponse:
    return FailedJobResponse(
        id=record.id,
        job_id=record.job_id,
        queue=record.queue,
        payload=record.payload,
        attempts=record.attempts,
        exception=record.exception,
        failed_at=record.failed_at,
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Failed job not found",
    )


@router.get(
    "",
    response_model=FailedJobListResponse,
    summary="List failed jobs",
    description="List dead-letter records, newest first.",
)
async def list_failed_jobs(
    failed_jobs: FailedJobs,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    queue: str | None = Query(default=None),
) -> FailedJobListResponse:
    """
    List dead-letter records.

    Args:
        failed_jobs: Dead-letter provider.
        page: Page number (1-indexed).
        page_size: Number of items per page.
        queue: Optional queue filter.

    Returns:
        FailedJobListResponse with paginated records.
    """
    offset = (page - 1) * page_size
    records, total = await failed_jobs.all(queue=queue, limit=page_size, offset=offset)

    return FailedJobListResponse(
        failed_jobs=[_record_to_response(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.get(
    "/{failed_job_id}",
    response_model=FailedJobResponse,
    summary="Get a failed job",
)
async def get_failed_job(
    failed_job_id: UUID,
    failed_jobs: FailedJobs,
) -> FailedJobResponse:
    record = await failed_jobs.find(failed_job_id)
    if record is None:
        raise _not_found()
    return _record_to_response(record)


@router.post(
    "/{failed_job_id}/retry",
    response_model=RetryFailedJobResponse,
    summary="Retry a failed job",
    description="Push the failed job's payload back onto its queue with fresh attempts.",
)
async def retry_failed(
    failed_job_id: UUID,
    failed_jobs: FailedJobs,
    store: Store,
) -> RetryFailedJobResponse:
    """
    Retry a dead-lettered job.

    Raises:
        HTTPException: If the record does not exist.
    """
    job = await retry_failed_job(store, failed_jobs, failed_job_id)
    if job is None:
        raise _not_found()

    return RetryFailedJobResponse(
        failed_job_id=failed_job_id,
        job_id=job.id,
        queue=job.queue,
        status=job.status,
    )


@router.delete(
    "/{failed_job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Forget a failed job",
)
async def forget_failed_job(
    failed_job_id: UUID,
    failed_jobs: FailedJobs,
) -> None:
    if not await failed_jobs.forget(failed_job_id):
        raise _not_found()
    logger.info("Failed job forgotten", extra={"failed_job_id": str(failed_job_id)})


@router.delete(
    "",
    summary="Flush failed jobs",
    description="Delete every dead-letter record, optionally for one queue.",
)
async def flush_failed_jobs(
    failed_jobs: FailedJobs,
    queue: str | None = Query(default=None),
) -> dict:
    deleted = await failed_jobs.flush(queue)
    logger.info("Failed jobs flushed", extra={"queue": queue, "deleted": deleted})
    return {"deleted": deleted}
