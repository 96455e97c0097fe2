"""File metadata operations on top of blob storage.

Upload order is blob first, then metadata. If the metadata insert fails the
blob is removed again so no unreferenced bytes linger. Deletion is the
reverse: metadata is authoritative, the blob goes best-effort afterwards.
"""
import hashlib
import logging
import uuid
from typing import Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.config import settings
from file_manager.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from file_manager.models.base import utcnow
from file_manager.models.file_record import FileRecord
from file_manager.services.file_storage import FileStorageService, make_storage_key
from file_manager.services.hierarchy import get_folder, validate_name

logger = logging.getLogger(__name__)


def calculate_checksum(content: bytes) -> str:
    """SHA-256 hex digest of the full content."""
    return hashlib.sha256(content).hexdigest()


def validate_upload(name: str, content: bytes, mime_type: Optional[str], size: Optional[int]) -> tuple[str, str]:
    """Check an upload against policy. Returns (name, normalized mime type)."""
    name = validate_name(name, kind="File")
    actual_size = len(content)
    if size is not None and size != actual_size:
        raise ValidationError(f"Declared size {size} does not match content size {actual_size}")
    if actual_size <= 0:
        raise ValidationError("File must not be empty")
    if actual_size > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(f"File exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit")

    normalized = (mime_type or "").split(";")[0].strip().lower()
    allowed = settings.allowed_mime_types
    if allowed and normalized not in allowed:
        raise ValidationError(f"File type '{normalized or 'unknown'}' is not allowed")
    return name, normalized


async def upload_file(
    db: AsyncSession,
    storage: FileStorageService,
    owner: str,
    folder_id: uuid.UUID,
    name: str,
    content: bytes,
    mime_type: Optional[str],
    size: Optional[int] = None,
) -> FileRecord:
    """Store ``content`` in ``folder_id`` and record its metadata."""
    name, mime_type = validate_upload(name, content, mime_type, size)
    folder = await get_folder(db, owner, folder_id)

    file_id = uuid.uuid4()
    storage_key = make_storage_key(owner, file_id, name)
    checksum = calculate_checksum(content)

    await storage.put(storage_key, content)

    record = FileRecord(
        id=file_id,
        name=name,
        size=len(content),
        checksum=checksum,
        folder_id=folder.id,
        user_id=owner,
        storage_key=storage_key,
        mime_type=mime_type,
    )
    db.add(record)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Metadata insert failed for {storage_key}, removing blob: {e}")
        await storage.delete_quietly(storage_key)
        raise StorageError(f"Failed to save file metadata: {e}") from e
    await db.refresh(record)
    logger.info(f"Uploaded file {record.id} ({record.size} bytes) for user {owner}")
    return record


async def get_file(db: AsyncSession, owner: str, file_id: uuid.UUID) -> FileRecord:
    """Fetch file metadata, enforcing ownership."""
    record = await db.get(FileRecord, file_id)
    if not record:
        raise NotFoundError("File not found")
    if record.user_id != owner:
        raise ForbiddenError("File belongs to another user")
    return record


async def read_file(
    db: AsyncSession, storage: FileStorageService, owner: str, file_id: uuid.UUID
) -> tuple[FileRecord, bytes]:
    """File metadata plus its stored bytes."""
    record = await get_file(db, owner, file_id)
    if not await storage.exists(record.storage_key):
        raise NotFoundError("File content not found")
    return record, await storage.get(record.storage_key)


async def list_files(
    db: AsyncSession,
    owner: str,
    folder_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[FileRecord]:
    """Files directly inside ``folder_id``, ordered by name."""
    await get_folder(db, owner, folder_id)
    result = await db.execute(
        select(FileRecord)
        .where(FileRecord.user_id == owner, FileRecord.folder_id == folder_id)
        .order_by(FileRecord.name)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def recent_files(db: AsyncSession, owner: str, limit: Optional[int] = None) -> list[FileRecord]:
    """Newest uploads first across all of the owner's folders."""
    result = await db.execute(
        select(FileRecord)
        .where(FileRecord.user_id == owner)
        .order_by(desc(FileRecord.created_at), FileRecord.name)
        .limit(limit or settings.RECENT_FILES_LIMIT)
    )
    return list(result.scalars().all())


async def move_file(
    db: AsyncSession,
    owner: str,
    file_id: uuid.UUID,
    target_folder_id: uuid.UUID,
) -> FileRecord:
    """Re-home a file. Only ``folder_id`` and ``updated_at`` are written."""
    record = await get_file(db, owner, file_id)
    target = await get_folder(db, owner, target_folder_id)
    if record.folder_id == target.id:
        return record

    try:
        result = await db.execute(
            update(FileRecord)
            .where(FileRecord.id == file_id, FileRecord.user_id == owner)
            .values(folder_id=target.id, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            await db.rollback()
            raise NotFoundError("File not found")
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError(f"Failed to move file {file_id}: {e}") from e
    await db.refresh(record)
    return record


async def delete_file(
    db: AsyncSession,
    storage: FileStorageService,
    owner: str,
    file_id: uuid.UUID,
) -> None:
    record = await get_file(db, owner, file_id)
    storage_key = record.storage_key
    try:
        await db.delete(record)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError(f"Failed to delete file {file_id}: {e}") from e
    await storage.delete_quietly(storage_key)
