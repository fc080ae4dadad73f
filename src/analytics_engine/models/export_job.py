"""ExportJob model — tracks the rendering of query or report results into a file."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from analytics_engine.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class ExportStatus(enum.StrEnum):
    """Lifecycle states of an export job.

    PENDING -> PROCESSING -> COMPLETED | FAILED, and COMPLETED -> EXPIRED
    once the retention window has passed.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class ExportJob(Base, UUIDMixin, TimestampMixin):
    """Durable record of one export request.

    Exactly one of ``query_id`` / ``report_id`` identifies the row source.
    Artifact metadata is only populated once the job is COMPLETED.
    """

    __tablename__ = "export_jobs"

    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_format: Mapped[str] = mapped_column(String(20), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)

    query_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    report_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    parameters: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    filters: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    options: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ExportStatus.PENDING.value,
        server_default=ExportStatus.PENDING.value,
    )
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(query_id IS NULL) != (report_id IS NULL)",
            name="ck_export_jobs_single_source",
        ),
        Index("ix_export_jobs_status", "status"),
        Index("ix_export_jobs_expires_at", "expires_at"),
        Index("ix_export_jobs_created_by", "created_by"),
    )
