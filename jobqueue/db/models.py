"""
SQLAlchemy database models.
Defines the failed_jobs dead-letter table.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class FailedJob(Base):
    """
    Durable record of a job that exhausted its attempts.

    Rows are written by workers when a job transitions to the failed state
    and removed by operators (retry, forget, flush) or by the scheduled
    pruning task.

    Key constraints:
    - job_id is unique so a repeated failure report for the same job is a no-op
    """

    __tablename__ = "failed_jobs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        unique=True,
    )

    queue: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    exception: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        # Index for pruning old records
        Index("ix_failed_jobs_failed_at", "failed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"FailedJob(id={self.id}, job_id={self.job_id}, "
            f"queue={self.queue}, attempts={self.attempts})"
        )
