"""FileRecord model - file metadata (actual bytes live in blob storage)."""
import uuid
from sqlalchemy import String, BigInteger, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from file_manager.models.base import Base, TimestampMixin, OwnerMixin


class FileRecord(Base, TimestampMixin, OwnerMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    folder_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("folders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        Index("idx_files_created_at", "created_at"),
    )
