"""
Health check routes.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import Response

from jobqueue import __version__
from jobqueue.api.dependencies import Store
from jobqueue.observability.metrics import get_metrics
from jobqueue.queue.base import QueueStoreError
from jobqueue.types.api import HealthResponse
from jobqueue.types.job import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _store_status(store) -> str:
    try:
        return "healthy" if await store.ping() else "unhealthy"
    except QueueStoreError as e:
        logger.warning(f"Queue store health check failed: {e}")
        return "unhealthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and queue store connection.",
)
async def health_check(store: Store) -> HealthResponse:
    """
    Perform a health check.

    Checks queue store connectivity and returns service status.

    Args:
        store: The queue store.

    Returns:
        HealthResponse with service status.
    """
    store_status = await _store_status(store)

    return HealthResponse(
        status="healthy" if store_status == "healthy" else "degraded",
        version=__version__,
        queue_store=store_status,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(store: Store) -> dict:
    """
    Kubernetes readiness probe endpoint.

    Returns:
        Ready status.
    """
    return {"ready": await _store_status(store) == "healthy"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness probe endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
