"""
Queue module.
Contains the queue store interface, its Redis and in-memory implementations,
and dead-letter handling.
"""

from jobqueue.config import Settings, get_settings
from jobqueue.queue.backoff import ExponentialBackoff, OutageBackoff
from jobqueue.queue.base import (
    QueueSize,
    QueueStore,
    QueueStoreError,
    StoreUnavailableError,
)
from jobqueue.queue.dispatcher import dispatch
from jobqueue.queue.failed import (
    DatabaseFailedJobProvider,
    FailedJobProvider,
    InMemoryFailedJobProvider,
    retry_failed_job,
)
from jobqueue.queue.memory_store import InMemoryQueueStore
from jobqueue.queue.redis_store import RedisQueueStore


def create_store(settings: Settings | None = None) -> QueueStore:
    """
    Create the queue store selected by ``queue_backend``.

    Args:
        settings: Settings to use. Defaults to the cached settings.

    Returns:
        QueueStore: A Redis or in-memory store.
    """
    settings = settings or get_settings()
    if settings.queue_backend == "memory":
        return InMemoryQueueStore()
    if settings.queue_backend == "redis":
        return RedisQueueStore.from_url(
            settings.redis_url,
            prefix=settings.queue_prefix,
            failed_ttl_seconds=settings.failed_job_ttl_seconds,
        )
    raise ValueError(f"Unknown queue backend: {settings.queue_backend}")


__all__ = [
    "QueueStore",
    "QueueSize",
    "QueueStoreError",
    "StoreUnavailableError",
    "InMemoryQueueStore",
    "RedisQueueStore",
    "FailedJobProvider",
    "InMemoryFailedJobProvider",
    "DatabaseFailedJobProvider",
    "retry_failed_job",
    "ExponentialBackoff",
    "OutageBackoff",
    "dispatch",
    "create_store",
]
