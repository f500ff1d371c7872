"""
Unit tests for the worker against the in-memory store.
"""

import asyncio
from collections import Counter

import pytest

from jobqueue.constants import JobStatus
from jobqueue.queue.backoff import ExponentialBackoff
from jobqueue.queue.base import StoreUnavailableError
from jobqueue.queue.failed import InMemoryFailedJobProvider
from jobqueue.queue.memory_store import InMemoryQueueStore
from jobqueue.types.job import JobContext, JobResult
from jobqueue.worker.handlers import register_handler, unregister_handler
from jobqueue.worker.main import Worker


def make_worker(store, failed_jobs=None, **kwargs) -> Worker:
    kwargs.setdefault("worker_id", "test-worker")
    kwargs.setdefault("sleep_seconds", 0)
    kwargs.setdefault("visibility_timeout", 30)
    kwargs.setdefault("retry_backoff", ExponentialBackoff(base=5, cap=300))
    return Worker(store, failed_jobs=failed_jobs, queues=["default"], **kwargs)


class TestProcessNext:
    """Tests for a single reserve/execute/report cycle."""

    @pytest.mark.asyncio
    async def test_returns_false_when_empty(self, store: InMemoryQueueStore):
        worker = make_worker(store)

        assert await worker.process_next() is False
        assert worker.reserved_count == 0

    @pytest.mark.asyncio
    async def test_success_acks_job(self, store: InMemoryQueueStore, metrics_registry):
        job = await store.push("default", {"job_type": "echo", "data": {"x": 1}})
        worker = make_worker(store)

        assert await worker.process_next() is True

        assert await store.get(job.id) is None
        assert worker.reserved_count == 1
        assert metrics_registry.get_sample_value(
            "jobs_processed_total", {"queue": "default", "status": "done"}
        ) == 1

    @pytest.mark.asyncio
    async def test_failure_is_retried_after_backoff(self, store: InMemoryQueueStore, clock):
        job = await store.push(
            "default",
            {"job_type": "flaky", "data": {"succeed_on_attempt": 2}},
            max_attempts=3,
        )
        worker = make_worker(store)

        assert await worker.process_next() is True
        retried = await store.get(job.id)
        assert retried.status == JobStatus.PENDING
        assert retried.attempts == 1
        assert "Flaky failure" in retried.last_error

        # Backoff for the first retry is the 5 second base
        clock.advance(4)
        assert await worker.process_next() is False
        clock.advance(1)
        assert await worker.process_next() is True

        assert await store.get(job.id) is None

    @pytest.mark.asyncio
    async def test_exhausted_job_is_dead_lettered(
        self,
        store: InMemoryQueueStore,
        failed_jobs: InMemoryFailedJobProvider,
        clock,
    ):
        job = await store.push("default", {"job_type": "failing_job"}, max_attempts=2)
        worker = make_worker(store, failed_jobs=failed_jobs)

        await worker.process_next()
        clock.advance(5)
        await worker.process_next()

        failed = await store.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.attempts == 2

        records, total = await failed_jobs.all()
        assert total == 1
        assert records[0].job_id == job.id
        assert records[0].attempts == 2
        assert "Intentional failure on attempt 2" in records[0].exception

        # Nothing left to run
        clock.advance(3600)
        assert await worker.process_next() is False

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_like_a_handler_error(
        self, store: InMemoryQueueStore, failed_jobs: InMemoryFailedJobProvider
    ):
        job = await store.push("default", {"job_type": "does_not_exist"}, max_attempts=1)
        worker = make_worker(store, failed_jobs=failed_jobs)

        await worker.process_next()

        assert (await store.get(job.id)).status == JobStatus.FAILED
        record = (await failed_jobs.all())[0][0]
        assert "No handler registered" in record.exception

    @pytest.mark.asyncio
    async def test_dead_letter_write_is_retried_until_recorded(
        self, store: InMemoryQueueStore, fast_backoff, metrics_registry
    ):
        class UnreachableOnceProvider(InMemoryFailedJobProvider):
            calls = 0

            async def log(self, job, exception):
                self.calls += 1
                if self.calls == 1:
                    raise ConnectionRefusedError("database down")
                return await super().log(job, exception)

        provider = UnreachableOnceProvider()
        job = await store.push("default", {"job_type": "failing_job"}, max_attempts=1)
        worker = make_worker(store, failed_jobs=provider)

        assert await worker.process_next() is True

        assert (await store.get(job.id)).status == JobStatus.FAILED
        assert provider.calls == 2
        records, total = await provider.all()
        assert total == 1
        assert records[0].job_id == job.id
        assert metrics_registry.get_sample_value(
            "queue_store_errors_total", {"component": "dead_letter"}
        ) == 1

    @pytest.mark.asyncio
    async def test_crashed_reservation_is_processed_by_another_worker(
        self, store: InMemoryQueueStore, clock
    ):
        job = await store.push("default", {"job_type": "echo"})

        # A worker reserves the job and dies without acking
        crashed = await store.reserve(["default"], "crashed-worker", visibility_timeout=30)
        assert crashed.id == job.id

        survivor = make_worker(store, worker_id="survivor")
        assert await survivor.process_next() is False

        clock.advance(30)
        assert await survivor.process_next() is True
        assert await store.get(job.id) is None

        # The crashed worker's late ack is refused
        assert await store.ack(job.id, "crashed-worker") is False

    @pytest.mark.asyncio
    async def test_max_jobs_stops_reserving(self, store: InMemoryQueueStore):
        for _ in range(3):
            await store.push("default", {"job_type": "echo"})
        worker = make_worker(store, max_jobs=2)

        assert await worker.process_next() is True
        assert await worker.process_next() is True
        assert await worker.process_next() is False
        assert (await store.size("default")).pending == 1

    @pytest.mark.asyncio
    async def test_slots_hold_reservations_under_their_own_owner(
        self, store: InMemoryQueueStore, clock
    ):
        worker = make_worker(store, concurrency=2)
        first_owner = worker.reservation_owner(0)
        second_owner = worker.reservation_owner(1)
        gates = {first_owner: asyncio.Event(), second_owner: asyncio.Event()}

        @register_handler("test_gated")
        async def gated(context: JobContext) -> JobResult:
            await gates[context.worker_id].wait()
            return JobResult(success=True)

        try:
            job = await store.push("default", {"job_type": "test_gated"})

            first = asyncio.create_task(worker.process_next(0))
            await asyncio.sleep(0.01)

            # Slot 0's reservation lapses and slot 1 picks the job up
            clock.advance(30)
            second = asyncio.create_task(worker.process_next(1))
            await asyncio.sleep(0.01)
            assert (await store.get(job.id)).reserved_by == second_owner

            # Slot 0's late ack must not complete slot 1's reservation
            gates[first_owner].set()
            await first
            held = await store.get(job.id)
            assert held.status == JobStatus.RESERVED
            assert held.reserved_by == second_owner

            gates[second_owner].set()
            await second
            assert await store.get(job.id) is None
        finally:
            unregister_handler("test_gated")

    @pytest.mark.asyncio
    async def test_max_jobs_holds_across_concurrent_slots(self, store: InMemoryQueueStore):
        for _ in range(6):
            await store.push("default", {"job_type": "echo"})
        worker = make_worker(store, concurrency=4, max_jobs=2)

        await asyncio.wait_for(worker.start(), timeout=5)

        assert worker.reserved_count == 2
        assert (await store.size("default")).pending == 4


class TestWorkerLoop:
    """Tests for the long-running worker loop."""

    @pytest.fixture
    def processed(self):
        seen: Counter = Counter()

        @register_handler("test_record")
        async def record(context: JobContext) -> JobResult:
            await asyncio.sleep(0)
            seen[context.job_id] += 1
            return JobResult(success=True)

        yield seen
        unregister_handler("test_record")

    @pytest.mark.asyncio
    async def test_concurrent_workers_process_each_job_once(
        self, store: InMemoryQueueStore, processed: Counter
    ):
        jobs = [await store.push("default", {"job_type": "test_record"}) for _ in range(20)]

        workers = [
            make_worker(store, worker_id=f"w{i}", concurrency=3, stop_when_empty=True)
            for i in range(3)
        ]
        await asyncio.wait_for(asyncio.gather(*(w.start() for w in workers)), timeout=5)

        assert set(processed) == {job.id for job in jobs}
        assert all(count == 1 for count in processed.values())
        assert sum(w.reserved_count for w in workers) == 20

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, store: InMemoryQueueStore):
        worker = make_worker(store, sleep_seconds=0.01)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        await worker.stop()

        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_backs_off_while_store_unavailable(
        self, clock, fast_backoff, metrics_registry
    ):
        class FlakyStore(InMemoryQueueStore):
            outages = 3

            async def reserve(self, queues, worker_id, visibility_timeout):
                if self.outages > 0:
                    self.outages -= 1
                    raise StoreUnavailableError("connection refused")
                return await super().reserve(queues, worker_id, visibility_timeout)

        store = FlakyStore(clock=clock)
        job = await store.push("default", {"job_type": "echo"})
        worker = make_worker(store, concurrency=1, stop_when_empty=True)

        await asyncio.wait_for(worker.start(), timeout=5)

        assert await store.get(job.id) is None
        assert metrics_registry.get_sample_value(
            "queue_store_errors_total", {"component": "worker"}
        ) == 3

    @pytest.mark.asyncio
    async def test_heartbeat_extends_running_jobs(self, store: InMemoryQueueStore):
        extended = []

        class SpyStore(InMemoryQueueStore):
            async def extend(self, job_id, worker_id, visibility_timeout):
                extended.append(job_id)
                return await super().extend(job_id, worker_id, visibility_timeout)

        spy = SpyStore()
        job = await spy.push(
            "default", {"job_type": "sleep", "data": {"duration_seconds": 0.3}}
        )
        worker = make_worker(
            spy, concurrency=1, stop_when_empty=True, heartbeat_interval=0.05
        )

        await asyncio.wait_for(worker.start(), timeout=5)

        assert job.id in extended
        assert await spy.get(job.id) is None

    @pytest.mark.asyncio
    async def test_draining_job_keeps_its_reservation_after_stop(self):
        live_store = InMemoryQueueStore()
        job = await live_store.push(
            "default", {"job_type": "sleep", "data": {"duration_seconds": 0.6}}
        )
        worker = make_worker(
            live_store,
            concurrency=1,
            visibility_timeout=0.2,
            heartbeat_interval=0.05,
        )

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.1)
        await worker.stop()

        # Well past the visibility timeout, but the job is still running
        await asyncio.sleep(0.35)
        assert await live_store.reserve(["default"], "other", visibility_timeout=30) is None

        await asyncio.wait_for(task, timeout=2)
        assert await live_store.get(job.id) is None
