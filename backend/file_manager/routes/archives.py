"""Archives API - submit zip jobs, poll status, download results."""
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.database import get_db
from file_manager.dependencies import get_archive_queue, get_current_user
from file_manager.schemas.archive import ArchiveCreate, ArchiveJobResponse
from file_manager.services.archive_queue import ArchiveQueue, get_job, list_jobs

router = APIRouter(prefix="/api/archives", tags=["archives"])


@router.post("", response_model=ArchiveJobResponse, status_code=202)
async def submit_archive(
    body: ArchiveCreate,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue: ArchiveQueue = Depends(get_archive_queue),
):
    """Queue a zip archive of the given files. Returns immediately."""
    return await queue.submit(db, owner, body.file_ids)


@router.get("", response_model=list[ArchiveJobResponse])
async def list_archives(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's archive jobs, newest first."""
    return await list_jobs(db, owner, limit=limit, offset=offset)


@router.get("/{job_id}", response_model=ArchiveJobResponse)
async def get_archive_status(
    job_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get job status and progress."""
    return await get_job(db, owner, job_id)


@router.get("/{job_id}/download")
async def download_archive(
    job_id: UUID,
    owner: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    queue: ArchiveQueue = Depends(get_archive_queue),
):
    """Stream a completed archive."""
    job, path = await queue.resolve_download(db, owner, job_id)
    return FileResponse(
        path=str(path),
        filename=f"archive-{job.id}.zip",
        media_type="application/zip",
    )
