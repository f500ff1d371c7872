"""
Request dependencies shared by the routes.
"""

from typing import Annotated

from fastapi import Depends, Request

from jobqueue.queue.base import QueueStore
from jobqueue.queue.failed import FailedJobProvider


def get_store(request: Request) -> QueueStore:
    """Queue store created by the application lifespan."""
    return request.app.state.store


def get_failed_job_provider(request: Request) -> FailedJobProvider:
    """Dead-letter provider created by the application lifespan."""
    return request.app.state.failed_jobs


Store = Annotated[QueueStore, Depends(get_store)]
FailedJobs = Annotated[FailedJobProvider, Depends(get_failed_job_provider)]
