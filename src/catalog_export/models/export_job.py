"""ExportJob model: persisted progress of a resumable CSV export."""

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from catalog_export.models.base import Base, TimestampMixin, UUIDMixin


class ExportJob(Base, UUIDMixin, TimestampMixin):
    """Tracks a chunked export of filtered products.

    ``cursor`` is the id of the last product written to the client-visible
    stream; a later run resumes strictly after it.
    """

    __tablename__ = "export_jobs"

    filters: Mapped[dict] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        server_default="pending",
    )
    cursor: Mapped[int] = mapped_column("last_cursor", Integer, nullable=False, default=0, server_default="0")
    rows_exported: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (Index("ix_export_jobs_status", "status"),)
