"""Folder hierarchy store.

Folders form one strict tree per user. Each folder materializes its ancestor
chain in ``path`` so descendant and breadcrumb lookups are single queries:

    Root      path="/"
    Docs      path="/Root/"
    Reports   path="/Root/Docs/"

Every operation is scoped to the calling owner; folders of other users are
reported as Forbidden, unknown ids as NotFound.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from file_manager.config import settings
from file_manager.errors import ConflictError, ForbiddenError, NotFoundError, StorageError, ValidationError
from file_manager.models.file_record import FileRecord
from file_manager.models.folder import Folder, ROOT_PATH
from file_manager.services.file_storage import FileStorageService

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def validate_name(name: Optional[str], kind: str = "Folder") -> str:
    """Return the trimmed name or raise ValidationError."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{kind} name must not be empty")
    if "/" in cleaned:
        raise ValidationError(f"{kind} name must not contain '/'")
    if cleaned in (".", ".."):
        raise ValidationError(f"{kind} name '{cleaned}' is reserved")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"{kind} name exceeds {MAX_NAME_LENGTH} characters")
    return cleaned


async def _find_root(db: AsyncSession, owner: str) -> Optional[Folder]:
    result = await db.execute(
        select(Folder).where(Folder.user_id == owner, Folder.parent_id.is_(None))
    )
    return result.scalar_one_or_none()


async def ensure_root_folder(db: AsyncSession, owner: str) -> Folder:
    """Create the owner's root folder once; return the existing one afterwards."""
    root = await _find_root(db, owner)
    if root:
        return root

    root = Folder(user_id=owner, name=settings.ROOT_FOLDER_NAME, parent_id=None, path=ROOT_PATH)
    db.add(root)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request bootstrapped the same user first
        await db.rollback()
        root = await _find_root(db, owner)
        if root is None:
            raise StorageError(f"Failed to create root folder for user {owner}")
        return root
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError(f"Failed to create root folder for user {owner}: {e}") from e
    await db.refresh(root)
    logger.info(f"Created root folder {root.id} for user {owner}")
    return root


async def get_root_folder(db: AsyncSession, owner: str) -> Folder:
    root = await _find_root(db, owner)
    if not root:
        raise NotFoundError("Root folder not found")
    return root


async def get_folder(db: AsyncSession, owner: str, folder_id: uuid.UUID) -> Folder:
    """Fetch a folder, enforcing ownership."""
    folder = await db.get(Folder, folder_id)
    if not folder:
        raise NotFoundError("Folder not found")
    if folder.user_id != owner:
        raise ForbiddenError("Folder belongs to another user")
    return folder


async def create_folder(
    db: AsyncSession,
    owner: str,
    name: str,
    parent_id: Optional[uuid.UUID] = None,
) -> Folder:
    """Create a folder under ``parent_id``.

    Without a parent this is the root bootstrap case and succeeds only once
    per owner. Sibling names are unique within a parent.
    """
    name = validate_name(name)

    if parent_id is None:
        if await _find_root(db, owner):
            raise ConflictError("Root folder already exists")
        folder = Folder(user_id=owner, name=name, parent_id=None, path=ROOT_PATH)
    else:
        parent = await get_folder(db, owner, parent_id)
        duplicate = await db.execute(
            select(Folder.id).where(
                Folder.user_id == owner,
                Folder.parent_id == parent.id,
                Folder.name == name,
            )
        )
        if duplicate.first():
            raise ConflictError(f"A folder named '{name}' already exists here")
        folder = Folder(user_id=owner, name=name, parent_id=parent.id, path=parent.child_path)

    db.add(folder)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(f"A folder named '{name}' already exists here") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError(f"Failed to create folder '{name}': {e}") from e
    await db.refresh(folder)
    return folder


async def list_children(
    db: AsyncSession,
    owner: str,
    parent_id: Optional[uuid.UUID],
    limit: int = 50,
    offset: int = 0,
) -> list[Folder]:
    """Direct children of ``parent_id`` ordered by name. ``None`` lists the root level."""
    query = select(Folder).where(Folder.user_id == owner)
    if parent_id is None:
        query = query.where(Folder.parent_id.is_(None))
    else:
        await get_folder(db, owner, parent_id)
        query = query.where(Folder.parent_id == parent_id)
    query = query.order_by(Folder.name).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def descendant_folder_ids(db: AsyncSession, owner: str, folder: Folder) -> list[uuid.UUID]:
    """Ids of every folder below ``folder``, found by materialized-path prefix.

    The prefix is compared with ``=`` on a substring rather than ``LIKE``:
    SQLite's ``LIKE`` ignores ASCII case, and "Docs" and "docs" are distinct
    siblings.
    """
    prefix = folder.child_path
    result = await db.execute(
        select(Folder.id).where(
            Folder.user_id == owner,
            func.substr(Folder.path, 1, len(prefix)) == prefix,
        )
    )
    return [row[0] for row in result.all()]


async def delete_folder(
    db: AsyncSession,
    owner: str,
    folder_id: uuid.UUID,
    storage: FileStorageService,
) -> dict:
    """Delete a folder with all descendant folders and their files.

    Metadata for the whole subtree goes in one transaction; blobs are removed
    afterwards on a best-effort basis.
    """
    folder = await get_folder(db, owner, folder_id)
    if folder.is_root:
        raise ConflictError("The root folder cannot be deleted")

    subtree_ids = [folder.id] + await descendant_folder_ids(db, owner, folder)
    file_rows = await db.execute(
        select(FileRecord.storage_key).where(
            FileRecord.user_id == owner,
            FileRecord.folder_id.in_(subtree_ids),
        )
    )
    storage_keys = [row[0] for row in file_rows.all()]

    try:
        await db.execute(
            delete(FileRecord)
            .where(FileRecord.user_id == owner, FileRecord.folder_id.in_(subtree_ids))
        )
        await db.execute(
            delete(Folder)
            .where(Folder.user_id == owner, Folder.id.in_(subtree_ids))
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError(f"Failed to delete folder {folder_id}: {e}") from e

    for key in storage_keys:
        await storage.delete_quietly(key)

    logger.info(
        f"Deleted folder {folder_id} for user {owner}: "
        f"{len(subtree_ids)} folder(s), {len(storage_keys)} file(s)"
    )
    return {"folders": len(subtree_ids), "files": len(storage_keys)}


async def breadcrumbs(db: AsyncSession, owner: str, folder_id: uuid.UUID) -> list[dict]:
    """Root-to-folder chain (inclusive), resolved from the folder's path."""
    folder = await get_folder(db, owner, folder_id)
    segments = [s for s in folder.path.split("/") if s]

    ancestors: list[Folder] = []
    if segments:
        # Ancestor i is named segments[i] and sits at the path built from segments[:i]
        conditions = []
        prefix = ROOT_PATH
        for segment in segments:
            conditions.append(and_(Folder.path == prefix, Folder.name == segment))
            prefix = f"{prefix}{segment}/"
        result = await db.execute(
            select(Folder).where(Folder.user_id == owner, or_(*conditions))
        )
        ancestors = sorted(result.scalars().all(), key=lambda f: len(f.path))
        if len(ancestors) != len(segments):
            logger.warning(
                f"Folder {folder.id} path {folder.path!r} resolved to "
                f"{len(ancestors)} of {len(segments)} ancestors"
            )

    return [
        {"id": f.id, "name": f.name, "path": f.path}
        for f in [*ancestors, folder]
    ]
