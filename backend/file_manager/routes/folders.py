"""Folders API routes."""
from uuid import UUID
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.config import settings
from file_manager.database import get_db
from file_manager.dependencies import get_current_user, get_file_storage
from file_manager.schemas.folder import BreadcrumbResponse, FolderCreate, FolderDeleteResponse, FolderResponse
from file_manager.services import hierarchy
from file_manager.services.file_storage import FileStorageService

router = APIRouter(prefix="/api/folders", tags=["folders"])


@router.get("", response_model=list[FolderResponse])
async def list_folders(
    parent_id: Optional[UUID] = Query(None, alias="parentId"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List direct children of a folder, by name. Without parentId, lists the root level."""
    return await hierarchy.list_children(db, owner, parent_id, limit=limit, offset=offset)


@router.get("/root", response_model=FolderResponse)
async def get_root_folder(
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await hierarchy.get_root_folder(db, owner)


@router.post("", response_model=FolderResponse, status_code=201)
async def create_folder(
    body: FolderCreate,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a folder. An omitted parentId places it under the caller's root."""
    parent_id = body.parent_id
    if parent_id is None:
        parent_id = (await hierarchy.get_root_folder(db, owner)).id
    return await hierarchy.create_folder(db, owner, body.name, parent_id)


@router.get("/{folder_id}", response_model=FolderResponse)
async def get_folder(
    folder_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await hierarchy.get_folder(db, owner, folder_id)


@router.get("/{folder_id}/breadcrumbs", response_model=list[BreadcrumbResponse])
async def get_breadcrumbs(
    folder_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Root-to-folder navigation chain."""
    return await hierarchy.breadcrumbs(db, owner, folder_id)


@router.delete("/{folder_id}", response_model=FolderDeleteResponse)
async def delete_folder(
    folder_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Delete a folder together with every descendant folder and file."""
    counts = await hierarchy.delete_folder(db, owner, folder_id, storage)
    return FolderDeleteResponse(
        id=str(folder_id),
        folders_deleted=counts["folders"],
        files_deleted=counts["files"],
    )
