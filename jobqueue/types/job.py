"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from jobqueue.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_QUEUE, JobStatus


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobPayload(BaseModel):
    """
    Job payload structure.
    Contains the actual work to be executed by workers.
    """

    job_type: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class Job(BaseModel):
    """
    A unit of work held in the queue store.

    The store is the source of truth for job state; instances returned by
    store operations are snapshots taken atomically with the operation.
    """

    id: UUID
    queue: str = DEFAULT_QUEUE
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    enqueued_at: datetime
    available_at: datetime
    reserved_by: str | None = None
    reserved_until: datetime | None = None
    last_error: str | None = None

    @property
    def job_type(self) -> str:
        """The handler name carried in the payload."""
        return str(self.payload.get("job_type", ""))

    @property
    def is_retryable(self) -> bool:
        """Check if another failure would still leave an attempt."""
        return self.attempts < self.max_attempts

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, queue={self.queue}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: UUID
    queue: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    worker_id: str
    reserved_until: datetime | None

    @property
    def data(self) -> dict[str, Any]:
        """Handler arguments from the payload."""
        return self.payload.get("data") or {}

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)


class FailedJobRecord(BaseModel):
    """
    Dead-letter record for a job that exhausted its attempts.
    """

    id: UUID
    job_id: UUID
    queue: str
    payload: dict[str, Any]
    attempts: int
    exception: str
    failed_at: datetime

    model_config = {"from_attributes": True}
