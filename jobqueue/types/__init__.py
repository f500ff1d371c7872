"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    ErrorResponse,
    FailedJobListResponse,
    FailedJobResponse,
    HealthResponse,
    JobResponse,
    PushJobRequest,
    QueueStatsResponse,
    RetryFailedJobResponse,
)
from jobqueue.types.job import (
    FailedJobRecord,
    Job,
    JobContext,
    JobPayload,
    JobResult,
)

__all__ = [
    # API types
    "PushJobRequest",
    "JobResponse",
    "QueueStatsResponse",
    "FailedJobResponse",
    "FailedJobListResponse",
    "RetryFailedJobResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "Job",
    "JobPayload",
    "JobResult",
    "JobContext",
    "FailedJobRecord",
]
