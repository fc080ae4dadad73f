"""Export Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from analytics_engine.schemas.common import PaginationMeta


class ExportOptions(BaseModel):
    """Rendering options stored with an export job."""

    columns: list[str] | None = Field(default=None, description="Output columns; defaults to the row keys")
    delimiter: str = Field(default=",", min_length=1, max_length=1, description="CSV delimiter")
    include_headers: bool = True
    format_headers: bool = Field(default=True, description="Title Case column headers")
    sheet_name: str | None = Field(default=None, description="Excel worksheet title")
    orientation: Literal["portrait", "landscape"] = "portrait"


class ExportRequest(BaseModel):
    """Request to export query or report results into a file.

    Exactly one of ``query_id`` / ``report_id`` must be set; the job manager
    enforces this along with format support.
    """

    output_format: str = Field(description="csv, excel, pdf or json")
    file_name: str = Field(description="Requested artifact name (sanitized)")
    query_id: UUID | None = None
    report_id: str | None = None
    name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict, description="Runtime query/report parameters")
    filters: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra equality filters (list values become IN filters)",
    )
    options: ExportOptions = Field(default_factory=ExportOptions)
    created_by: str | None = None


class ExportJobResponse(BaseModel):
    """Response for an export job."""

    id: UUID
    name: str | None = None
    output_format: str
    file_name: str
    query_id: UUID | None = None
    report_id: str | None = None
    status: str
    row_count: int | None = None
    file_size_bytes: int | None = None
    file_url: str | None = None
    error: str | None = None
    created_by: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    expires_at: datetime

    model_config = {"from_attributes": True}


class PaginatedExportJobResponse(BaseModel):
    """Paginated list of export jobs."""

    items: list[ExportJobResponse]
    pagination: PaginationMeta
