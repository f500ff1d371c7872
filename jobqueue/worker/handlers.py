"""
Job handlers registry and implementations.

Job handlers must be idempotent - a job whose reservation expires while its
handler is still running can be reclaimed and executed again elsewhere.
"""

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from jobqueue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_report")
        async def handle_send_report(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def unregister_handler(job_type: str) -> None:
    """Remove a handler from the registry."""
    _handlers.pop(job_type, None)


def get_handler(job_type: str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for smoke tests.

    Simply returns the input payload as output.
    """
    return JobResult(
        success=True,
        output={"echo": context.payload},
    )


@register_handler("sleep")
async def handle_sleep(context: JobContext) -> JobResult:
    """
    Sleep handler for testing delays.

    Data:
    - duration_seconds: How long to sleep
    """
    duration = context.data.get("duration_seconds", 1)

    await asyncio.sleep(duration)

    return JobResult(
        success=True,
        output={"slept_for": duration},
    )


@register_handler("failing_job")
async def handle_failing_job(context: JobContext) -> JobResult:
    """
    Handler that always fails - for exercising retries and dead-lettering.
    """
    return JobResult(
        success=False,
        error=f"Intentional failure on attempt {context.attempt}",
    )


@register_handler("flaky")
async def handle_flaky(context: JobContext) -> JobResult:
    """
    Handler that fails until a given attempt.

    Data:
    - succeed_on_attempt: First attempt number that succeeds (default 2)
    """
    succeed_on = context.data.get("succeed_on_attempt", 2)

    if context.attempt < succeed_on:
        return JobResult(
            success=False,
            error=f"Flaky failure on attempt {context.attempt}",
        )

    return JobResult(
        success=True,
        output={"succeeded_on_attempt": context.attempt},
    )


@register_handler("http_request")
async def handle_http_request(context: JobContext) -> JobResult:
    """
    Make an HTTP request.

    Data:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional JSON request body
    - timeout_seconds: Request timeout (default 30)
    """
    data = context.data
    url = data.get("url")
    method = data.get("method", "GET").upper()
    headers = data.get("headers", {})
    body = data.get("body")

    if not url:
        return JobResult(
            success=False,
            error="Missing 'url' in job data",
        )

    try:
        async with httpx.AsyncClient() as client:
            response = await client.request(
                method=method,
                url=url,
                headers=headers,
                json=body if method in ["POST", "PUT", "PATCH"] else None,
                timeout=data.get("timeout_seconds", 30.0),
            )
    except httpx.HTTPError as e:
        return JobResult(
            success=False,
            error=f"HTTP request failed: {e}",
        )

    return JobResult(
        success=response.is_success,
        output={
            "status_code": response.status_code,
            "body": response.text[:1000],  # Truncate response
        },
        error=None if response.is_success else f"HTTP {response.status_code}",
    )


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the handler named by its payload's ``job_type``.

    Handler exceptions are converted into failed results so the worker can
    apply the retry policy.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    job_type = context.payload.get("job_type")

    if not job_type:
        return JobResult(
            success=False,
            error="Payload has no job_type",
        )

    handler = get_handler(job_type)

    if handler is None:
        logger.error(
            f"No handler for job type: {job_type}",
            extra={"job_id": str(context.job_id)}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job type: {job_type}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "job_type": job_type}
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {type(e).__name__}: {e}",
        )
