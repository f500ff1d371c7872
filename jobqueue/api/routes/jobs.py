"""
Queue and job routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from jobqueue.api.dependencies import Store
from jobqueue.constants import API_V1_PREFIX
from jobqueue.observability.metrics import get_metrics
from jobqueue.queue.dispatcher import dispatch
from jobqueue.types.api import JobResponse, PushJobRequest, QueueStatsResponse
from jobqueue.types.job import Job

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_V1_PREFIX, tags=["Jobs"])

QueueName = Path(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.\-]+$")


def _job_to_response(job: Job) -> JobResponse:
    """Convert a Job to a JobResponse."""
    return JobResponse(
        id=job.id,
        queue=job.queue,
        payload=job.payload,
        status=job.status,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        enqueued_at=job.enqueued_at,
        available_at=job.available_at,
        reserved_by=job.reserved_by,
        reserved_until=job.reserved_until,
        last_error=job.last_error,
    )


@router.post(
    "/queues/{queue}/jobs",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Push a job",
    description="Push a job onto a queue for the handler named by job_type.",
)
async def push_job(
    request: PushJobRequest,
    store: Store,
    queue: str = QueueName,
) -> JobResponse:
    """
    Push a new job.

    Args:
        request: Job push request.
        store: The queue store.
        queue: Target queue name.

    Returns:
        JobResponse for the pending job.
    """
    job = await dispatch(
        store,
        job_type=request.job_type,
        data=request.data,
        queue=queue,
        max_attempts=request.max_attempts,
        delay_seconds=request.delay_seconds,
    )
    return _job_to_response(job)


@router.get(
    "/queues/{queue}",
    response_model=QueueStatsResponse,
    summary="Get queue size",
    description="Count the jobs of a queue by state.",
)
async def get_queue(
    store: Store,
    queue: str = QueueName,
) -> QueueStatsResponse:
    size = await store.size(queue)
    get_metrics().update_queue_depth(
        queue=queue,
        pending=size.pending,
        delayed=size.delayed,
        reserved=size.reserved,
        failed=size.failed,
    )
    return QueueStatsResponse(
        queue=queue,
        pending=size.pending,
        delayed=size.delayed,
        reserved=size.reserved,
        failed=size.failed,
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get a pending, reserved or failed job. Completed jobs are removed.",
)
async def get_job(job_id: UUID, store: Store) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not in the store.
    """
    job = await store.get(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return _job_to_response(job)
