"""
Housekeeping tasks every scheduler registers.
"""

import logging
from collections.abc import Sequence
from datetime import timedelta

from jobqueue.observability.metrics import get_metrics
from jobqueue.queue.base import QueueStore
from jobqueue.queue.failed import FailedJobProvider
from jobqueue.scheduler.schedule import Schedule
from jobqueue.types.job import utcnow

logger = logging.getLogger(__name__)

PRUNE_FAILED_JOBS = "prune-failed-jobs"
QUEUE_METRICS = "queue-metrics"


def register_default_tasks(
    schedule: Schedule,
    store: QueueStore,
    failed_jobs: FailedJobProvider,
    queues: Sequence[str],
    retention_hours: int,
) -> None:
    """
    Register dead-letter pruning and queue depth reporting.

    Args:
        schedule: Schedule to register on.
        store: Queue store to sample queue sizes from.
        failed_jobs: Dead-letter records to prune.
        queues: Queues to report depth for.
        retention_hours: Age after which dead-letter records are removed.
    """

    async def prune_failed_jobs() -> int:
        before = utcnow() - timedelta(hours=retention_hours)
        count = await failed_jobs.prune(before)
        logger.info(
            f"Pruned {count} failed job records",
            extra={"before": before.isoformat()}
        )
        return count

    async def record_queue_metrics() -> None:
        metrics = get_metrics()
        for queue in queues:
            size = await store.size(queue)
            metrics.update_queue_depth(
                queue=queue,
                pending=size.pending,
                delayed=size.delayed,
                reserved=size.reserved,
                failed=size.failed,
            )

    if schedule.get(PRUNE_FAILED_JOBS) is None:
        schedule.call(
            prune_failed_jobs,
            "daily",
            name=PRUNE_FAILED_JOBS,
            without_overlapping=True,
            on_one_server=True,
        )
    if schedule.get(QUEUE_METRICS) is None:
        schedule.call(record_queue_metrics, "every minute", name=QUEUE_METRICS)
