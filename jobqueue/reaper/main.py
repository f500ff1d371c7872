"""
Reservation reaper for recovering abandoned jobs.

The reaper runs periodically to find reservations whose visibility timeout
has expired and returns those jobs to pending. This handles worker crashes
and ensures at-least-once delivery even on queues no worker is currently
polling (reserve also reclaims lazily on the queues it pops from).
"""

import asyncio
import logging
import signal
from collections.abc import Sequence

from jobqueue.config import get_settings
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics
from jobqueue.queue import create_store
from jobqueue.queue.backoff import OutageBackoff
from jobqueue.queue.base import QueueStore, StoreUnavailableError

logger = logging.getLogger(__name__)


class Reaper:
    """
    Reaper that reclaims expired reservations.

    Runs periodically to:
    1. Find reserved jobs whose reserved_until has passed
    2. Return them to pending for reprocessing
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        store: QueueStore,
        queues: Sequence[str] | None = None,
        interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: The queue store.
            queues: Queues to sweep. Defaults to the worker queues.
            interval_seconds: Seconds between sweeps.
        """
        settings = get_settings()
        self.store = store
        self.queues = list(queues or settings.worker_queues)
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._outage = OutageBackoff(
            settings.connection_backoff_base_seconds,
            settings.connection_backoff_cap_seconds,
        )
        self._running = False
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            delay = self.interval
            try:
                recovered = await self.run_once()
                self._outage.reset()

                if recovered > 0:
                    logger.info(f"Reclaimed {recovered} expired reservations")

            except StoreUnavailableError as e:
                delay = max(self.interval, self._outage.failure())
                self._metrics.record_store_error("reaper")
                logger.warning(f"Queue store unavailable, retrying in {delay:.1f}s: {e}")
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(delay)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Sweep every queue once (for testing or cron-style execution).

        Returns:
            Number of jobs reclaimed.
        """
        total = 0
        for queue in self.queues:
            count = await self.store.reclaim_expired(queue)
            if count > 0:
                self._metrics.record_jobs_reclaimed(queue, count)
            total += count
        return total


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging("reaper")

    store = create_store()
    reaper = Reaper(store)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await store.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
