"""
Integration tests for the API endpoints.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient

from jobqueue.constants import JobStatus
from jobqueue.queue.failed import InMemoryFailedJobProvider
from jobqueue.queue.memory_store import InMemoryQueueStore


class TestJobAPI:
    """Integration tests for queue and job endpoints."""

    @pytest_asyncio.fixture
    async def created_job(self, client: AsyncClient) -> dict:
        """Push a job for testing."""
        response = await client.post(
            "/v1/queues/default/jobs",
            json={"job_type": "echo", "data": {"test": True}},
        )
        return response.json()

    @pytest.mark.asyncio
    async def test_push_job_success(self, client: AsyncClient, store: InMemoryQueueStore):
        """Test successful job push."""
        response = await client.post(
            "/v1/queues/emails/jobs",
            json={"job_type": "echo", "data": {"message": "hello"}, "max_attempts": 5},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["queue"] == "emails"
        assert data["status"] == JobStatus.PENDING
        assert data["max_attempts"] == 5
        assert data["payload"] == {"job_type": "echo", "data": {"message": "hello"}}
        assert (await store.size("emails")).pending == 1

    @pytest.mark.asyncio
    async def test_push_delayed_job(self, client: AsyncClient, store: InMemoryQueueStore):
        response = await client.post(
            "/v1/queues/default/jobs",
            json={"job_type": "echo", "delay_seconds": 60},
        )

        assert response.status_code == 201
        assert (await store.size("default")).delayed == 1

    @pytest.mark.asyncio
    async def test_push_job_validation(self, client: AsyncClient):
        """Test push fails without a job type or with bad attempts."""
        response = await client.post("/v1/queues/default/jobs", json={"data": {}})
        assert response.status_code == 422

        response = await client.post(
            "/v1/queues/default/jobs",
            json={"job_type": "echo", "max_attempts": 0},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_push_job_invalid_queue_name(self, client: AsyncClient):
        response = await client.post(
            "/v1/queues/bad:name/jobs",
            json={"job_type": "echo"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_job_success(self, client: AsyncClient, created_job: dict):
        """Test getting a job by ID."""
        job_id = created_job["id"]

        response = await client.get(f"/v1/jobs/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == job_id
        assert data["attempts"] == 0

    @pytest.mark.asyncio
    async def test_get_job_not_found(self, client: AsyncClient):
        """Test getting a non-existent job."""
        response = await client.get(f"/v1/jobs/{uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_queue_stats(self, client: AsyncClient, store: InMemoryQueueStore):
        for _ in range(3):
            await store.push("default", {"job_type": "echo"})
        await store.reserve(["default"], "w1", 30)

        response = await client.get("/v1/queues/default")

        assert response.status_code == 200
        assert response.json() == {
            "queue": "default",
            "pending": 2,
            "delayed": 0,
            "reserved": 1,
            "failed": 0,
        }


class TestFailedJobAPI:
    """Integration tests for dead-letter endpoints."""

    @pytest_asyncio.fixture
    async def failed_record(
        self,
        store: InMemoryQueueStore,
        failed_jobs: InMemoryFailedJobProvider,
    ):
        """Run a job to permanent failure and record it."""
        await store.push("reports", {"job_type": "failing_job"}, max_attempts=1)
        job = await store.reserve(["reports"], "w1", 30)
        failed = await store.fail(job.id, "w1", error="boom")
        return await failed_jobs.log(failed, "boom")

    @pytest.mark.asyncio
    async def test_list_failed_jobs(self, client: AsyncClient, failed_record):
        response = await client.get("/v1/failed-jobs")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["has_next"] is False
        assert data["failed_jobs"][0]["id"] == str(failed_record.id)
        assert data["failed_jobs"][0]["exception"] == "boom"

    @pytest.mark.asyncio
    async def test_list_failed_jobs_queue_filter(self, client: AsyncClient, failed_record):
        response = await client.get("/v1/failed-jobs", params={"queue": "other"})

        assert response.status_code == 200
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_get_failed_job(self, client: AsyncClient, failed_record):
        response = await client.get(f"/v1/failed-jobs/{failed_record.id}")

        assert response.status_code == 200
        assert response.json()["job_id"] == str(failed_record.job_id)

        response = await client.get(f"/v1/failed-jobs/{uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_failed_job(
        self,
        client: AsyncClient,
        store: InMemoryQueueStore,
        failed_jobs: InMemoryFailedJobProvider,
        failed_record,
    ):
        response = await client.post(f"/v1/failed-jobs/{failed_record.id}/retry")

        assert response.status_code == 200
        data = response.json()
        assert data["queue"] == "reports"
        assert data["status"] == JobStatus.PENDING
        assert data["job_id"] != str(failed_record.job_id)

        assert (await store.size("reports")).pending == 1
        assert await failed_jobs.find(failed_record.id) is None

    @pytest.mark.asyncio
    async def test_retry_unknown_failed_job(self, client: AsyncClient):
        response = await client.post(f"/v1/failed-jobs/{uuid4()}/retry")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_forget_failed_job(self, client: AsyncClient, failed_record):
        response = await client.delete(f"/v1/failed-jobs/{failed_record.id}")
        assert response.status_code == 204

        response = await client.delete(f"/v1/failed-jobs/{failed_record.id}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_flush_failed_jobs(self, client: AsyncClient, failed_record):
        response = await client.delete("/v1/failed-jobs")

        assert response.status_code == 200
        assert response.json() == {"deleted": 1}


class TestHealthAPI:
    """Integration tests for health endpoints."""

    @pytest.mark.asyncio
    async def test_liveness_check(self, client: AsyncClient):
        """Test liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["queue_store"] == "healthy"

    @pytest.mark.asyncio
    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"ready": True}

    @pytest.mark.asyncio
    async def test_health_degraded_when_store_down(
        self, client: AsyncClient, store: InMemoryQueueStore, monkeypatch
    ):
        async def down() -> bool:
            return False

        monkeypatch.setattr(store, "ping", down)

        response = await client.get("/health")

        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient):
        """Test Prometheus metrics endpoint."""
        await client.post("/v1/queues/default/jobs", json={"job_type": "echo"})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "jobs_pushed_total" in response.text
