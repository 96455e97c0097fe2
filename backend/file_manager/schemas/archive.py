"""Archive job request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import field_validator
from file_manager.schemas.base import CamelModel, CamelORMModel


class ArchiveCreate(CamelModel):
    file_ids: list[uuid.UUID]


class ArchiveJobResponse(CamelORMModel):
    id: uuid.UUID
    status: str
    file_ids: list[str] = []
    download_handle: Optional[str] = None
    entry_count: Optional[int] = None
    skipped_file_ids: list[str] = []
    progress: dict = {}
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    user_id: str

    @field_validator('file_ids', 'skipped_file_ids', mode='before')
    @classmethod
    def none_to_list(cls, v):
        return v if v is not None else []

    @field_validator('progress', mode='before')
    @classmethod
    def none_to_dict(cls, v):
        return v if v is not None else {}
