"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> RESERVED (worker reservation)
    - RESERVED -> DONE (ack, job removed from the store)
    - RESERVED -> PENDING (failure with attempts left, release, or expired reservation)
    - RESERVED -> FAILED (max attempts exhausted)
    """

    PENDING = "pending"
    RESERVED = "reserved"
    DONE = "done"
    FAILED = "failed"


class TaskOutcome(StrEnum):
    """Outcome of a scheduled task invocation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DISPATCHED = "dispatched"
    SKIPPED = "skipped"


# Default values
DEFAULT_QUEUE = "default"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 60

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_PUSHED = "jobs_pushed_total"
METRIC_JOBS_PROCESSED = "jobs_processed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_RESERVED = "jobs_reserved_total"
METRIC_JOBS_RECLAIMED = "jobs_reclaimed_total"
METRIC_STORE_ERRORS = "queue_store_errors_total"
METRIC_SCHEDULED_RUNS = "scheduled_task_runs_total"
METRIC_SCHEDULED_DURATION = "scheduled_task_duration_seconds"

# Trace span names
SPAN_PUSH_JOB = "push_job"
SPAN_RESERVE_JOB = "reserve_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_ACK_JOB = "ack_job"
SPAN_FAIL_JOB = "fail_job"
SPAN_SCHEDULER_TICK = "scheduler_tick"
SPAN_RUN_SCHEDULED_TASK = "run_scheduled_task"
