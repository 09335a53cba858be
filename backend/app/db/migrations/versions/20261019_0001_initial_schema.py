"""Initial schema for scrape jobs, targets and media items.

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19 09:12:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scrape_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("total_targets", sa.Integer(), nullable=False),
        sa.Column("done_targets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_targets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("done_targets + failed_targets <= total_targets", name="ck_scrape_jobs_progress"),
    )

    op.create_table(
        "scrape_targets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("scrape_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("job_id", "source_url"),
    )

    op.create_table(
        "media_items",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("scrape_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("media_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("source_url", "media_url", "type", name="uq_media_items_source_media_type"),
    )
    op.create_index("idx_media_items_created_id", "media_items", ["created_at", "id"])
    op.create_index("idx_media_items_job_created", "media_items", ["job_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_media_items_job_created", table_name="media_items")
    op.drop_index("idx_media_items_created_id", table_name="media_items")
    op.drop_table("media_items")
    op.drop_table("scrape_targets")
    op.drop_table("scrape_jobs")
