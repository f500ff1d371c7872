"""
Queue store interface.

All coordination between workers, reapers and schedulers goes through an
implementation of this interface. Every mutating operation must be atomic
with respect to other callers of the same store.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from jobqueue.types.job import Job


class QueueStoreError(Exception):
    """Base class for queue store errors."""


class StoreUnavailableError(QueueStoreError):
    """The backing store could not be reached."""


@dataclass
class QueueSize:
    """Per-state job counts for a single queue."""

    queue: str
    pending: int = 0
    delayed: int = 0
    reserved: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.delayed + self.reserved


class QueueStore(ABC):
    """
    Narrow interface over the shared queue store.

    Reservation is exclusive: ``reserve`` hands a job to exactly one worker,
    and ``ack``/``fail``/``release``/``extend`` only succeed for the worker
    that currently holds the reservation. Those calls return ``None``/``False``
    for stale reservations instead of raising.
    """

    @abstractmethod
    async def push(
        self,
        queue: str,
        payload: dict[str, Any],
        max_attempts: int = 3,
        delay_seconds: float = 0,
    ) -> Job:
        """Enqueue a new pending job."""

    @abstractmethod
    async def reserve(
        self,
        queues: Sequence[str],
        worker_id: str,
        visibility_timeout: float,
    ) -> Job | None:
        """
        Reserve the next available job.

        Queues are tried in order; the first one with an available job wins.
        Expired reservations on a queue are reclaimed before popping from it.
        """

    @abstractmethod
    async def ack(self, job_id: UUID, worker_id: str) -> bool:
        """Mark a reserved job as done and remove it from the store."""

    @abstractmethod
    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        retry_delay: float = 0,
    ) -> Job | None:
        """
        Record a handler failure.

        Increments the attempt count. The job returns to pending after
        ``retry_delay`` while attempts remain, otherwise it is marked failed.
        """

    @abstractmethod
    async def release(
        self,
        job_id: UUID,
        worker_id: str,
        delay_seconds: float = 0,
    ) -> Job | None:
        """Return a reserved job to pending without consuming an attempt."""

    @abstractmethod
    async def extend(
        self,
        job_id: UUID,
        worker_id: str,
        visibility_timeout: float,
    ) -> bool:
        """Extend a reservation (heartbeat)."""

    @abstractmethod
    async def reclaim_expired(self, queue: str) -> int:
        """Return expired reservations on a queue to pending."""

    @abstractmethod
    async def get(self, job_id: UUID) -> Job | None:
        """Get a job by ID."""

    @abstractmethod
    async def size(self, queue: str) -> QueueSize:
        """Count jobs on a queue by state."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check store connectivity."""

    async def close(self) -> None:
        """Release client resources."""
