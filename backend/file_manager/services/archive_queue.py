"""Background archive (zip) job engine.

One ``ArchiveQueue`` is created per process in the FastAPI lifespan. ``submit``
persists a pending job and pushes its id onto an ``asyncio.Queue``; a single
worker task consumes that queue, so archive builds run one at a time in
submission order.

Job lifecycle: pending -> processing -> completed | failed. Every transition
is a compare-and-set on the current status, so a terminal job never changes
again.

Files that are missing, owned by someone else, unreadable or whose bytes no
longer match the stored checksum are skipped and listed in
``skipped_file_ids``. Only a failure of the archive container itself fails
the job.
"""
import asyncio
import logging
import os
import traceback
import uuid
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from file_manager.config import settings
from file_manager.database import async_session
from file_manager.errors import ConflictError, ForbiddenError, JobFailure, NotFoundError, StorageError, ValidationError
from file_manager.models.archive_job import ArchiveJob, COMPLETED, FAILED, PENDING, PROCESSING
from file_manager.models.base import utcnow
from file_manager.models.file_record import FileRecord
from file_manager.services.file_storage import FileStorageService, file_storage
from file_manager.services.files import calculate_checksum

logger = logging.getLogger(__name__)

MAX_FILES_PER_JOB = 1000


def download_handle(job_id) -> str:
    """Stable, job-scoped retrieval path for a completed archive."""
    return f"/api/archives/{job_id}/download"


def safe_error_message(e: Exception, fallback: str = "Archive build failed") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions produce an empty str(e). This helper falls back to the
    exception class name.
    """
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg


def unique_entry_name(name: str, used: set[str]) -> str:
    """Disambiguate duplicate entry names as ``name (1).ext``, ``name (2).ext``..."""
    if name not in used:
        used.add(name)
        return name
    stem, ext = os.path.splitext(name)
    n = 1
    while f"{stem} ({n}){ext}" in used:
        n += 1
    candidate = f"{stem} ({n}){ext}"
    used.add(candidate)
    return candidate


def normalize_file_ids(file_ids: Iterable) -> list[str]:
    """Ordered, de-duplicated list of id strings."""
    seen: set[str] = set()
    ordered = []
    for file_id in file_ids:
        key = str(file_id)
        if key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


async def get_job(db: AsyncSession, owner: str, job_id: uuid.UUID) -> ArchiveJob:
    """Pure read of a job's current state, safe to poll."""
    job = await db.get(ArchiveJob, job_id, populate_existing=True)
    if not job:
        raise NotFoundError("Archive job not found")
    if job.user_id != owner:
        raise ForbiddenError("Archive job belongs to another user")
    return job


async def list_jobs(db: AsyncSession, owner: str, limit: int = 20, offset: int = 0) -> list[ArchiveJob]:
    result = await db.execute(
        select(ArchiveJob)
        .where(ArchiveJob.user_id == owner)
        .order_by(desc(ArchiveJob.created_at))
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


class ArchiveQueue:
    """Single-worker FIFO queue building zip archives from stored files."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        storage: FileStorageService = file_storage,
        archive_dir: Optional[str] = None,
        compression_level: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._storage = storage
        self.archive_dir = Path(archive_dir or settings.ARCHIVE_STORAGE_PATH).resolve()
        self.compression_level = (
            settings.ARCHIVE_COMPRESSION_LEVEL if compression_level is None else compression_level
        )
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        # Serializes job-record writes between submitters and the worker
        self._lock = asyncio.Lock()

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Recover crashed jobs, re-enqueue pending ones, start the worker."""
        if self.running:
            return
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        self._queue = asyncio.Queue()
        await self.recover_stale_jobs()

        async with self._session_factory() as db:
            result = await db.execute(
                select(ArchiveJob.id)
                .where(ArchiveJob.status == PENDING)
                .order_by(ArchiveJob.created_at)
            )
            pending_ids = [row[0] for row in result.all()]
        for job_id in pending_ids:
            self._queue.put_nowait(job_id)
        if pending_ids:
            logger.info(f"Re-enqueued {len(pending_ids)} pending archive job(s)")

        self._worker = asyncio.create_task(self._worker_loop(), name="archive-worker")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Archive worker stopped")

    async def join(self) -> None:
        """Wait until every enqueued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def recover_stale_jobs(self) -> int:
        """Mark every job still in 'processing' as failed.

        Runs before the worker starts. Only this process's worker moves jobs
        into 'processing', so any such row was stranded by a previous process
        that crashed or was stopped mid-build.
        """
        async with self._session_factory() as db:
            result = await db.execute(select(ArchiveJob).where(ArchiveJob.status == PROCESSING))
            stale_jobs = result.scalars().all()
            for job in stale_jobs:
                job.status = FAILED
                job.error_message = "Recovered on startup: build was interrupted by a restart"
                job.download_handle = None
                job.completed_at = utcnow()
                logger.warning(f"Recovered stale archive job {job.id} (started at {job.started_at})")
            if stale_jobs:
                await db.commit()
                logger.info(f"Recovered {len(stale_jobs)} stale archive job(s)")
        return len(stale_jobs)

    # ── Producer side ────────────────────────────────────────────

    async def submit(self, db: AsyncSession, owner: str, file_ids: Iterable) -> ArchiveJob:
        """Persist a pending job and enqueue it. Never waits for the build."""
        ordered_ids = normalize_file_ids(file_ids)
        if not ordered_ids:
            raise ValidationError("At least one file id is required")
        if len(ordered_ids) > MAX_FILES_PER_JOB:
            raise ValidationError(f"An archive may contain at most {MAX_FILES_PER_JOB} files")

        job = ArchiveJob(
            user_id=owner,
            file_ids=ordered_ids,
            status=PENDING,
            skipped_file_ids=[],
            progress={"current": 0, "total": len(ordered_ids), "message": "Queued"},
        )
        async with self._lock:
            db.add(job)
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise StorageError(f"Failed to save archive job: {e}") from e
        await db.refresh(job)

        if self._queue is not None:
            self._queue.put_nowait(job.id)
        else:
            logger.warning(f"Archive job {job.id} persisted while worker is not running")
        logger.info(f"Submitted archive job {job.id} ({len(ordered_ids)} file(s)) for user {owner}")
        return job

    def archive_path(self, job_id) -> Path:
        """One container per job, discoverable by id alone."""
        return self.archive_dir / f"{job_id}.zip"

    async def resolve_download(self, db: AsyncSession, owner: str, job_id: uuid.UUID) -> tuple[ArchiveJob, Path]:
        job = await get_job(db, owner, job_id)
        if job.status != COMPLETED:
            raise ConflictError(f"Archive is not ready (status: {job.status})")
        path = self.archive_path(job.id)
        if not path.is_file():
            raise NotFoundError("Archive file is no longer available")
        return job, path

    # ── Consumer side ────────────────────────────────────────────

    async def _worker_loop(self) -> None:
        logger.info("Archive worker started")
        while True:
            job_id = await self._queue.get()
            try:
                await self.process_job(job_id)
            except Exception as e:
                logger.error(f"Archive worker error on job {job_id}: {e}")
                logger.error(traceback.format_exc())
            finally:
                self._queue.task_done()

    async def _transition(self, job_id, expected: str, **values) -> bool:
        """Compare-and-set status update. False when the job was not in ``expected``."""
        async with self._lock:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(ArchiveJob)
                    .where(ArchiveJob.id == job_id, ArchiveJob.status == expected)
                    .values(**values)
                )
                await db.commit()
                return result.rowcount == 1

    async def update_job_progress(self, job_id, current: int, total: int, message: str = "") -> None:
        async with self._lock:
            async with self._session_factory() as db:
                await db.execute(
                    update(ArchiveJob)
                    .where(ArchiveJob.id == job_id, ArchiveJob.status == PROCESSING)
                    .values(progress={"current": current, "total": total, "message": message})
                )
                await db.commit()

    async def process_job(self, job_id) -> None:
        """Claim a pending job and run it to a terminal state."""
        claimed = await self._transition(job_id, PENDING, status=PROCESSING, started_at=utcnow())
        if not claimed:
            logger.info(f"Archive job {job_id} is no longer pending, skipping")
            return

        async with self._session_factory() as db:
            job = await db.get(ArchiveJob, job_id)
        logger.info(f"Processing archive job {job_id} ({len(job.file_ids)} file(s))")

        try:
            entry_count, skipped = await self._build_archive(job)
        except asyncio.CancelledError:
            logger.warning(f"Archive job {job_id} interrupted by shutdown")
            await self._mark_failed(job_id, JobFailure("Archive build interrupted by shutdown"))
            raise
        except Exception as e:
            logger.error(f"Archive job {job_id} failed: {e}")
            logger.error(traceback.format_exc())
            await self._mark_failed(job_id, e)
            return

        try:
            completed = await self._transition(
                job_id,
                PROCESSING,
                status=COMPLETED,
                download_handle=download_handle(job_id),
                entry_count=entry_count,
                skipped_file_ids=skipped,
                completed_at=utcnow(),
                progress={"current": len(job.file_ids), "total": len(job.file_ids), "message": "Done"},
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record completion of archive job {job_id}: {e}")
            self._discard(self.archive_path(job_id))
            await self._mark_failed(job_id, e)
            return

        if completed:
            logger.info(
                f"Archive job {job_id} completed: {entry_count} entr(y/ies), {len(skipped)} skipped"
            )
        else:
            logger.warning(f"Archive job {job_id} left 'processing' during build, discarding archive")
            self._discard(self.archive_path(job_id))

    async def _mark_failed(self, job_id, error: Exception) -> None:
        # Retry so a transient DB error doesn't leave the job stuck in "processing"
        failure = error if isinstance(error, JobFailure) else JobFailure(safe_error_message(error))
        for attempt in range(3):
            try:
                await self._transition(
                    job_id,
                    PROCESSING,
                    status=FAILED,
                    error_message=failure.message[:2000],
                    download_handle=None,
                    completed_at=utcnow(),
                )
                return
            except SQLAlchemyError as db_err:
                logger.error(
                    f"Failed to mark archive job {job_id} as failed "
                    f"(attempt {attempt + 1}/3): {db_err}"
                )
                if attempt < 2:
                    await asyncio.sleep(1)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove archive {path}: {e}")

    async def _resolve_file(self, job: ArchiveJob, raw_id: str) -> Optional[tuple[FileRecord, bytes]]:
        """Load one requested file, or None when it must be left out."""
        try:
            file_id = uuid.UUID(raw_id)
        except ValueError:
            logger.warning(f"Archive job {job.id}: skipping malformed file id {raw_id!r}")
            return None

        async with self._session_factory() as db:
            record = await db.get(FileRecord, file_id)
        if record is None:
            logger.warning(f"Archive job {job.id}: file {file_id} not found, skipping")
            return None
        if record.user_id != job.user_id:
            logger.warning(f"Archive job {job.id}: file {file_id} not owned by {job.user_id}, skipping")
            return None

        try:
            if not await self._storage.exists(record.storage_key):
                logger.warning(f"Archive job {job.id}: blob for file {file_id} is missing, skipping")
                return None
            data = await self._storage.get(record.storage_key)
        except (StorageError, ValidationError) as e:
            logger.warning(f"Archive job {job.id}: could not read file {file_id}, skipping: {e}")
            return None

        if calculate_checksum(data) != record.checksum:
            logger.warning(f"Archive job {job.id}: checksum mismatch for file {file_id}, skipping")
            return None
        return record, data

    @staticmethod
    def _abandon(zf: zipfile.ZipFile) -> None:
        try:
            zf.close()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not close abandoned archive {zf.filename}: {e}")

    async def _build_archive(self, job: ArchiveJob) -> tuple[int, list[str]]:
        """Write the job's container. Returns (entry count, skipped ids).

        Opening, every entry write and the final central-directory flush run
        in worker threads so status polls are served while a build runs.
        """
        final_path = self.archive_path(job.id)
        part_path = final_path.with_name(f"{final_path.name}.part")
        total = len(job.file_ids)
        skipped: list[str] = []
        used_names: set[str] = set()
        entry_count = 0

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        try:
            zf = await asyncio.to_thread(
                zipfile.ZipFile,
                part_path, "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            )
            try:
                for index, raw_id in enumerate(job.file_ids, start=1):
                    resolved = await self._resolve_file(job, raw_id)
                    if resolved is None:
                        skipped.append(raw_id)
                    else:
                        record, data = resolved
                        entry = unique_entry_name(record.name, used_names)
                        await asyncio.to_thread(zf.writestr, entry, data)
                        entry_count += 1
                    await self.update_job_progress(job.id, index, total, f"Processed {index}/{total}")
            except BaseException:
                self._abandon(zf)
                raise
            await asyncio.to_thread(zf.close)
            await asyncio.to_thread(os.replace, part_path, final_path)
        except BaseException:
            self._discard(part_path)
            raise
        return entry_count, skipped
