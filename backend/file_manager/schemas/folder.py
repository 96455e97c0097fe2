"""Folder request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from file_manager.schemas.base import CamelModel, CamelORMModel


class FolderCreate(CamelModel):
    name: str
    parent_id: Optional[uuid.UUID] = None


class FolderResponse(CamelORMModel):
    id: uuid.UUID
    name: str
    parent_id: Optional[uuid.UUID] = None
    path: str
    created_at: datetime
    user_id: str


class BreadcrumbResponse(CamelORMModel):
    id: uuid.UUID
    name: str
    path: str


class FolderDeleteResponse(CamelModel):
    deleted: bool = True
    id: str
    folders_deleted: int
    files_deleted: int
