"""FastAPI dependencies shared by the routers."""
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.database import get_db
from file_manager.services.archive_queue import ArchiveQueue
from file_manager.services.file_storage import FileStorageService, file_storage
from file_manager.services.hierarchy import ensure_root_folder


async def get_current_user(
    x_user_id: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> str:
    """Caller identity as resolved by the upstream auth layer.

    The first request of a new user bootstraps their root folder.
    """
    owner = (x_user_id or "").strip()
    if not owner:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if len(owner) > 100:
        raise HTTPException(status_code=401, detail="Invalid user identity")
    await ensure_root_folder(db, owner)
    return owner


def get_file_storage() -> FileStorageService:
    return file_storage


def get_archive_queue(request: Request) -> ArchiveQueue:
    return request.app.state.archive_queue
