"""
Producer-side helpers for pushing jobs onto queues.
"""

import logging
from typing import Any

from jobqueue.config import get_settings
from jobqueue.constants import DEFAULT_QUEUE, SPAN_PUSH_JOB
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.queue.base import QueueStore
from jobqueue.types.job import Job, JobPayload

logger = logging.getLogger(__name__)


async def dispatch(
    store: QueueStore,
    job_type: str,
    data: dict[str, Any] | None = None,
    queue: str = DEFAULT_QUEUE,
    max_attempts: int | None = None,
    delay_seconds: float = 0,
) -> Job:
    """
    Push a job for the handler registered as ``job_type``.

    Args:
        store: The queue store.
        job_type: Handler name.
        data: Handler arguments.
        queue: Target queue.
        max_attempts: Attempts before the job is dead-lettered.
        delay_seconds: Seconds before the job becomes available.

    Returns:
        The pushed job.
    """
    if max_attempts is None:
        max_attempts = get_settings().default_max_attempts

    payload = JobPayload(job_type=job_type, data=data or {})

    with get_tracer().start_as_current_span(SPAN_PUSH_JOB) as span:
        span.set_attribute("queue", queue)
        span.set_attribute("job_type", job_type)

        job = await store.push(
            queue=queue,
            payload=payload.model_dump(exclude_none=True),
            max_attempts=max_attempts,
            delay_seconds=delay_seconds,
        )
        span.set_attribute("job_id", str(job.id))

    get_metrics().record_job_pushed(queue=queue, job_type=job_type)
    logger.info(
        "Pushed job",
        extra={"job_id": str(job.id), "queue": queue, "job_type": job_type},
    )
    return job
