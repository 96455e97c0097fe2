"""File request/response schemas."""
import uuid
from datetime import datetime
from file_manager.schemas.base import CamelModel, CamelORMModel


class FileMove(CamelModel):
    folder_id: uuid.UUID


class FileResponse(CamelORMModel):
    id: uuid.UUID
    name: str
    size: int
    checksum: str
    folder_id: uuid.UUID
    mime_type: str
    created_at: datetime
    updated_at: datetime
    user_id: str
