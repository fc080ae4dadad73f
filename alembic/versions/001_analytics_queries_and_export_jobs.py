"""Initial migration: analytics_queries and export_jobs tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Saved query definitions
    op.create_table(
        "analytics_queries",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("query_type", sa.String(20), nullable=False),
        sa.Column("collection", sa.String(200), nullable=False),
        sa.Column("fields", JSONType, nullable=False),
        sa.Column("filters", JSONType, nullable=False),
        sa.Column("joins", JSONType, nullable=False),
        sa.Column("aggregations", JSONType, nullable=False),
        sa.Column("group_by", JSONType, nullable=False),
        sa.Column("sort", JSONType, nullable=False),
        sa.Column("row_limit", sa.Integer, nullable=True),
        sa.Column("row_offset", sa.Integer, nullable=True),
        sa.Column("parameters", JSONType, nullable=False),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_analytics_queries_name", "analytics_queries", ["name"])
    op.create_index("ix_analytics_queries_query_type", "analytics_queries", ["query_type"])

    # Export jobs
    op.create_table(
        "export_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("output_format", sa.String(20), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("query_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("report_id", sa.String(100), nullable=True),
        sa.Column("parameters", JSONType, nullable=False),
        sa.Column("filters", JSONType, nullable=False),
        sa.Column("options", JSONType, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("file_path", sa.String(500), nullable=True),
        sa.Column("file_url", sa.String(500), nullable=True),
        sa.Column("row_count", sa.Integer, nullable=True),
        sa.Column("file_size_bytes", sa.BigInteger, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("(query_id IS NULL) != (report_id IS NULL)", name="ck_export_jobs_single_source"),
    )
    op.create_index("ix_export_jobs_status", "export_jobs", ["status"])
    op.create_index("ix_export_jobs_expires_at", "export_jobs", ["expires_at"])
    op.create_index("ix_export_jobs_created_by", "export_jobs", ["created_by"])


def downgrade() -> None:
    op.drop_table("export_jobs")
    op.drop_table("analytics_queries")
