"""Initial schema with failed_jobs table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create failed_jobs table
    op.create_table(
        "failed_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("job_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("queue", sa.String(255), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("exception", sa.Text, nullable=False),
        sa.Column(
            "failed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", name="uq_failed_jobs_job_id"),
    )

    op.create_index("ix_failed_jobs_queue", "failed_jobs", ["queue"])

    # Index for pruning old records
    op.create_index("ix_failed_jobs_failed_at", "failed_jobs", ["failed_at"])


def downgrade() -> None:
    op.drop_index("ix_failed_jobs_failed_at", table_name="failed_jobs")
    op.drop_index("ix_failed_jobs_queue", table_name="failed_jobs")
    op.drop_table("failed_jobs")
