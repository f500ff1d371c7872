"""
API routes module.
"""

from jobqueue.api.routes.failed import router as failed_router
from jobqueue.api.routes.health import router as health_router
from jobqueue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "failed_router", "health_router"]
