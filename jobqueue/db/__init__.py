"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    get_engine,
    get_session_context,
    init_db,
)
from jobqueue.db.models import Base, FailedJob
from jobqueue.db.repository import FailedJobRepository

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "FailedJob",
    "FailedJobRepository",
    "Base",
]
