"""Tests for file metadata operations and blob storage."""
import hashlib
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import OTHER_OWNER, OWNER
from file_manager.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from file_manager.models.file_record import FileRecord
from file_manager.services import files as file_service
from file_manager.services.file_storage import make_storage_key
from file_manager.services.hierarchy import create_folder


async def test_upload_then_get_round_trips_metadata(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(
        db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf", size=len(pdf_bytes)
    )

    fetched = await file_service.get_file(db, OWNER, record.id)
    assert fetched.name == "a.pdf"
    assert fetched.size == len(pdf_bytes)
    assert fetched.checksum == hashlib.sha256(pdf_bytes).hexdigest()
    assert fetched.folder_id == root.id
    assert fetched.storage_key == make_storage_key(OWNER, record.id, "a.pdf")
    assert await storage.get(fetched.storage_key) == pdf_bytes


async def test_same_bytes_give_same_checksum(db, storage, root, pdf_bytes):
    first = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    second = await file_service.upload_file(db, storage, OWNER, root.id, "b.pdf", pdf_bytes, "application/pdf")
    third = await file_service.upload_file(
        db, storage, OWNER, root.id, "c.pdf", pdf_bytes + b"x", "application/pdf"
    )

    assert first.checksum == second.checksum
    assert first.checksum != third.checksum
    assert first.storage_key != second.storage_key


@pytest.mark.parametrize(
    "name, content, mime_type, size",
    [
        ("", b"%PDF", "application/pdf", None),
        ("a.pdf", b"", "application/pdf", None),
        ("a.pdf", b"%PDF", "application/pdf", 99),
        ("a.txt", b"hello", "text/plain", None),
        ("a.pdf", b"%PDF", None, None),
    ],
)
async def test_upload_validation_errors(db, storage, root, name, content, mime_type, size):
    with pytest.raises(ValidationError):
        await file_service.upload_file(db, storage, OWNER, root.id, name, content, mime_type, size=size)
    assert (await db.execute(select(FileRecord))).scalars().all() == []


async def test_upload_accepts_mime_type_parameters(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(
        db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "Application/PDF; charset=binary"
    )
    assert record.mime_type == "application/pdf"


async def test_upload_into_foreign_folder_is_forbidden(db, storage, root, other_root, pdf_bytes):
    with pytest.raises(ForbiddenError):
        await file_service.upload_file(db, storage, OWNER, other_root.id, "a.pdf", pdf_bytes, "application/pdf")


async def test_upload_removes_blob_when_metadata_insert_fails(db, storage, root, pdf_bytes, tmp_path):
    with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
        with pytest.raises(StorageError):
            await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")

    blobs = [p for p in (tmp_path / "blobs").rglob("*") if p.is_file()]
    assert blobs == []


async def test_get_file_ownership(db, storage, root, other_root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")

    with pytest.raises(ForbiddenError):
        await file_service.get_file(db, OTHER_OWNER, record.id)
    with pytest.raises(NotFoundError):
        await file_service.get_file(db, OWNER, uuid.uuid4())


async def test_list_files_sorted_by_name(db, storage, root, pdf_bytes):
    for name in ["c.pdf", "a.pdf", "b.pdf"]:
        await file_service.upload_file(db, storage, OWNER, root.id, name, pdf_bytes, "application/pdf")

    listed = await file_service.list_files(db, OWNER, root.id)
    assert [f.name for f in listed] == ["a.pdf", "b.pdf", "c.pdf"]
    page = await file_service.list_files(db, OWNER, root.id, limit=2, offset=2)
    assert [f.name for f in page] == ["c.pdf"]


async def test_recent_files_newest_first_and_owner_scoped(db, storage, root, other_root, pdf_bytes):
    docs = await create_folder(db, OWNER, "Docs", root.id)
    await file_service.upload_file(db, storage, OWNER, root.id, "old.pdf", pdf_bytes, "application/pdf")
    await file_service.upload_file(db, storage, OWNER, docs.id, "new.pdf", pdf_bytes, "application/pdf")
    await file_service.upload_file(db, storage, OTHER_OWNER, other_root.id, "theirs.pdf", pdf_bytes, "application/pdf")

    recent = await file_service.recent_files(db, OWNER, limit=10)
    assert [f.name for f in recent] == ["new.pdf", "old.pdf"]


async def test_move_file_updates_folder_only(db, storage, root, pdf_bytes):
    docs = await create_folder(db, OWNER, "Docs", root.id)
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    original_checksum = record.checksum

    moved = await file_service.move_file(db, OWNER, record.id, docs.id)

    assert moved.folder_id == docs.id
    assert moved.checksum == original_checksum
    assert [f.id for f in await file_service.list_files(db, OWNER, docs.id)] == [record.id]
    assert await file_service.list_files(db, OWNER, root.id) == []


async def test_move_file_into_foreign_folder_is_forbidden(db, storage, root, other_root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    with pytest.raises(ForbiddenError):
        await file_service.move_file(db, OWNER, record.id, other_root.id)


async def test_delete_file_removes_metadata_and_blob(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    key = record.storage_key

    await file_service.delete_file(db, storage, OWNER, record.id)

    with pytest.raises(NotFoundError):
        await file_service.get_file(db, OWNER, record.id)
    assert not await storage.exists(key)


async def test_delete_file_succeeds_when_blob_delete_fails(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")

    with patch.object(storage, "delete", side_effect=StorageError("backend down")):
        await file_service.delete_file(db, storage, OWNER, record.id)

    with pytest.raises(NotFoundError):
        await file_service.get_file(db, OWNER, record.id)


async def test_storage_rejects_keys_escaping_root(storage):
    with pytest.raises(ValidationError):
        await storage.put("../outside.pdf", b"x")


async def test_storage_get_missing_blob_raises(storage):
    with pytest.raises(StorageError):
        await storage.get("nobody/missing.pdf")
    assert not await storage.exists("nobody/missing.pdf")


async def test_read_file_returns_stored_bytes(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")

    fetched, content = await file_service.read_file(db, storage, OWNER, record.id)

    assert fetched.id == record.id
    assert content == pdf_bytes


async def test_read_file_with_missing_blob_is_not_found(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    await storage.delete(record.storage_key)

    with pytest.raises(NotFoundError):
        await file_service.read_file(db, storage, OWNER, record.id)


async def test_delete_file_commit_failure_raises_storage_error(db, storage, root, pdf_bytes):
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    file_id, key = record.id, record.storage_key

    with patch.object(db, "commit", side_effect=OperationalError("DELETE", {}, Exception("database is locked"))):
        with pytest.raises(StorageError):
            await file_service.delete_file(db, storage, OWNER, file_id)

    assert (await file_service.get_file(db, OWNER, file_id)).id == file_id
    assert await storage.exists(key)


async def test_move_file_commit_failure_raises_storage_error(db, storage, root, pdf_bytes):
    docs = await create_folder(db, OWNER, "Docs", root.id)
    record = await file_service.upload_file(db, storage, OWNER, root.id, "a.pdf", pdf_bytes, "application/pdf")
    file_id, root_id, docs_id = record.id, root.id, docs.id

    with patch.object(db, "commit", side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))):
        with pytest.raises(StorageError):
            await file_service.move_file(db, OWNER, file_id, docs_id)

    assert (await file_service.get_file(db, OWNER, file_id)).folder_id == root_id
