"""Import all models so SQLAlchemy metadata knows about them."""
from file_manager.models.base import Base
from file_manager.models.folder import Folder
from file_manager.models.file_record import FileRecord
from file_manager.models.archive_job import ArchiveJob

__all__ = ["Base", "Folder", "FileRecord", "ArchiveJob"]
