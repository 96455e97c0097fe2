"""ArchiveJob model - queue of zip archive builds."""
import uuid
from datetime import datetime
from sqlalchemy import String, Text, Integer, JSON, DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column
from file_manager.models.base import Base, OwnerMixin, utcnow

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"


class ArchiveJob(Base, OwnerMixin):
    __tablename__ = "archive_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Ordered list of requested file ids, stored as strings
    file_ids: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default=PENDING, index=True)
    download_handle: Mapped[str | None] = mapped_column(String(500), nullable=True)
    entry_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    skipped_file_ids: Mapped[list] = mapped_column(JSON, default=list)
    progress: Mapped[dict] = mapped_column(JSON, default=lambda: {"current": 0, "total": 0, "message": ""})
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
