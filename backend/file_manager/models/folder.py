"""Folder model - one tree per user, materialized-path layout.

``path`` holds the ancestor chain: ``parent.path + parent.name + "/"``.
The root folder has no parent and ``path == "/"``.
"""
import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Index, UniqueConstraint, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column
from file_manager.models.base import Base, OwnerMixin, utcnow

ROOT_PATH = "/"


class Folder(Base, OwnerMixin):
    __tablename__ = "folders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    path: Mapped[str] = mapped_column(String(4000), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "parent_id", "name", name="uq_folders_sibling_name"),
        # NULL parent_id escapes the constraint above, so the single root needs its own
        Index(
            "uq_folders_root_per_user", "user_id", unique=True,
            postgresql_where=text("parent_id IS NULL"),
            sqlite_where=text("parent_id IS NULL"),
        ),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def child_path(self) -> str:
        """Path carried by every direct child of this folder."""
        return f"{self.path}{self.name}/"
