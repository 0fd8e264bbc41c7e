"""Export Pydantic v2 request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from catalog_export.lib.exporter.types import ExportFilters, ExportJobRecord, ExportJobStatus
from catalog_export.schemas.common import PaginationMeta


class ExportFiltersSchema(BaseModel):
    """Filter criteria captured when an export job is created."""

    category: str = Field(default="", max_length=100, description="Exact category match")
    status: str = Field(default="", max_length=20, description="Exact status match")
    search: str = Field(default="", max_length=255, description="Case-insensitive substring of the product name")

    def to_filters(self) -> ExportFilters:
        return ExportFilters(category=self.category.strip(), status=self.status.strip(), search=self.search.strip())


class ExportRequest(ExportFiltersSchema):
    """Request to create a CSV export job."""


class ExportJobCreatedResponse(BaseModel):
    """Response for a newly created export job."""

    job_id: UUID
    total_rows: int


class ExportJobResponse(BaseModel):
    """Current state of an export job."""

    job_id: UUID
    status: ExportJobStatus
    cursor: int
    rows_exported: int
    total_rows: int
    filters: ExportFiltersSchema
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, job: ExportJobRecord) -> "ExportJobResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            cursor=job.cursor,
            rows_exported=job.rows_exported,
            total_rows=job.total_rows,
            filters=ExportFiltersSchema(**job.filters.to_dict()),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class PaginatedExportJobResponse(BaseModel):
    """Paginated list of export jobs."""

    items: list[ExportJobResponse]
    pagination: PaginationMeta
