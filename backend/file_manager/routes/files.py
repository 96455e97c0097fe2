"""Files API routes."""
from urllib.parse import quote
from uuid import UUID
from typing import Optional
from fastapi import APIRouter, Depends, Form, HTTPException, Query, UploadFile, File as FastAPIFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.config import settings
from file_manager.database import get_db
from file_manager.dependencies import get_current_user, get_file_storage
from file_manager.schemas.common import DeleteResponse
from file_manager.schemas.file import FileMove, FileResponse as FileResponseSchema
from file_manager.services import files as file_service
from file_manager.services.file_storage import FileStorageService

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("", response_model=list[FileResponseSchema])
async def list_files(
    folder_id: Optional[UUID] = Query(None, alias="folderId"),
    recent: bool = Query(False),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List files in a folder by name, or the most recent uploads with recent=true."""
    if recent:
        return await file_service.recent_files(db, owner, limit=min(limit, settings.RECENT_FILES_LIMIT))
    if folder_id is None:
        raise HTTPException(status_code=422, detail="folderId is required unless recent=true")
    return await file_service.list_files(db, owner, folder_id, limit=limit, offset=offset)


@router.post("", response_model=FileResponseSchema, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    folder_id: UUID = Form(..., alias="folderId"),
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Upload a file into a folder and create its record."""
    contents = await file.read()
    return await file_service.upload_file(
        db,
        storage,
        owner,
        folder_id,
        name=file.filename or "",
        content=contents,
        mime_type=file.content_type,
        size=file.size,
    )


@router.get("/{file_id}", response_model=FileResponseSchema)
async def get_file_metadata(
    file_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get file metadata by ID."""
    return await file_service.get_file(db, owner, file_id)


@router.get("/{file_id}/download")
async def download_file(
    file_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Download a file by ID."""
    file_rec, content = await file_service.read_file(db, storage, owner, file_id)
    return Response(
        content=content,
        media_type=file_rec.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=utf-8''{quote(file_rec.name)}"},
    )


@router.patch("/{file_id}", response_model=FileResponseSchema)
async def move_file(
    file_id: UUID,
    body: FileMove,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Move a file to another folder."""
    return await file_service.move_file(db, owner, file_id, body.folder_id)


@router.delete("/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Delete a file and its record."""
    await file_service.delete_file(db, storage, owner, file_id)
    return {"deleted": True, "id": str(file_id)}
