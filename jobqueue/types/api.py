"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from jobqueue.constants import JobStatus


class PushJobRequest(BaseModel):
    """Request body for pushing a job onto a queue."""

    job_type: str = Field(..., min_length=1, description="Handler name")
    data: dict[str, Any] = Field(default_factory=dict, description="Handler arguments")
    max_attempts: int = Field(default=3, ge=1, le=25, description="Maximum attempts")
    delay_seconds: float = Field(
        default=0, ge=0, description="Seconds before the job becomes available"
    )


class JobResponse(BaseModel):
    """Full job details response."""

    id: UUID
    queue: str
    payload: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    enqueued_at: datetime
    available_at: datetime
    reserved_by: str | None
    reserved_until: datetime | None
    last_error: str | None


class QueueStatsResponse(BaseModel):
    """Per-state job counts for a queue."""

    queue: str
    pending: int
    delayed: int
    reserved: int
    failed: int


class FailedJobResponse(BaseModel):
    """Dead-letter record details."""

    id: UUID
    job_id: UUID
    queue: str
    payload: dict[str, Any]
    attempts: int
    exception: str
    failed_at: datetime


class FailedJobListResponse(BaseModel):
    """Paginated list of dead-letter records."""

    failed_jobs: list[FailedJobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class RetryFailedJobResponse(BaseModel):
    """Response body after re-queueing a failed job."""

    failed_job_id: UUID
    job_id: UUID
    queue: str
    status: JobStatus
    message: str = "Job queued for retry"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    queue_store: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
