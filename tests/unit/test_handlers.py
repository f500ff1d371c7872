"""
Unit tests for job handlers.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from jobqueue.types.job import JobContext, JobResult, utcnow
from jobqueue.worker.handlers import (
    execute_job,
    get_handler,
    handle_echo,
    handle_failing_job,
    handle_flaky,
    handle_http_request,
    list_handlers,
    register_handler,
    unregister_handler,
)


def make_context(payload: dict, attempt: int = 1, max_attempts: int = 3) -> JobContext:
    return JobContext(
        job_id=uuid4(),
        queue="default",
        attempt=attempt,
        max_attempts=max_attempts,
        payload=payload,
        worker_id="test-worker",
        reserved_until=utcnow() + timedelta(seconds=30),
    )


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        return make_context({"job_type": "echo", "data": {"message": "test"}})

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "echo" in handlers
        assert "sleep" in handlers
        assert "failing_job" in handlers
        assert "flaky" in handlers
        assert "http_request" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        handler = get_handler("echo")
        assert handler is not None
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        handler = get_handler("nonexistent")
        assert handler is None

    @pytest.mark.asyncio
    async def test_echo_handler(self, job_context: JobContext):
        """Test the echo handler."""
        result = await handle_echo(job_context)

        assert result.success is True
        assert result.output == {"echo": job_context.payload}

    @pytest.mark.asyncio
    async def test_failing_handler(self, job_context: JobContext):
        """Test the failing job handler."""
        result = await handle_failing_job(job_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    @pytest.mark.asyncio
    async def test_flaky_handler_succeeds_on_configured_attempt(self):
        payload = {"job_type": "flaky", "data": {"succeed_on_attempt": 3}}

        assert (await handle_flaky(make_context(payload, attempt=2))).success is False
        assert (await handle_flaky(make_context(payload, attempt=3))).success is True

    @pytest.mark.asyncio
    async def test_http_request_without_url_fails(self):
        result = await handle_http_request(make_context({"job_type": "http_request"}))

        assert result.success is False
        assert "url" in result.error

    @pytest.mark.asyncio
    async def test_execute_job_with_valid_type(self, job_context: JobContext):
        """Test execute_job with a valid job type."""
        result = await execute_job(job_context)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_execute_job_with_invalid_type(self, job_context: JobContext):
        """Test execute_job with an invalid job type."""
        job_context.payload["job_type"] = "nonexistent_handler"

        result = await execute_job(job_context)

        assert result.success is False
        assert "No handler registered" in result.error

    @pytest.mark.asyncio
    async def test_execute_job_without_type(self):
        result = await execute_job(make_context({"data": {}}))

        assert result.success is False
        assert "job_type" in result.error

    @pytest.mark.asyncio
    async def test_execute_job_converts_exceptions(self):
        """A raising handler becomes a failed result instead of crashing the worker."""

        @register_handler("test_raises")
        async def raises(context: JobContext) -> JobResult:
            raise RuntimeError("kaboom")

        try:
            result = await execute_job(make_context({"job_type": "test_raises"}))
        finally:
            unregister_handler("test_raises")

        assert result.success is False
        assert "RuntimeError: kaboom" in result.error


class TestJobContext:
    """Tests for JobContext."""

    def test_is_last_attempt(self):
        """Test is_last_attempt property."""
        context = make_context({}, attempt=3, max_attempts=3)

        assert context.is_last_attempt is True

    def test_remaining_attempts(self):
        """Test remaining_attempts property."""
        context = make_context({}, attempt=1, max_attempts=3)

        assert context.remaining_attempts == 2

    def test_data_defaults_to_empty(self):
        assert make_context({"job_type": "echo"}).data == {}
