"""Shared fixtures: SQLite database, temp blob store, archive queue, API client."""
import os
import tempfile

_TMP_ROOT = tempfile.mkdtemp(prefix="file-manager-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_ROOT}/default.db")
os.environ.setdefault("FILE_STORAGE_PATH", os.path.join(_TMP_ROOT, "uploads"))
os.environ.setdefault("ARCHIVE_STORAGE_PATH", os.path.join(_TMP_ROOT, "archives"))
os.environ.setdefault("ALLOWED_MIME_TYPES", "application/pdf")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from file_manager.database import build_engine, get_db
from file_manager.dependencies import get_file_storage
from file_manager.main import app
from file_manager.models import Base
from file_manager.services.archive_queue import ArchiveQueue
from file_manager.services.file_storage import FileStorageService
from file_manager.services.hierarchy import ensure_root_folder

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture
async def engine(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return FileStorageService(base_path=str(tmp_path / "blobs"))


@pytest.fixture
async def root(db):
    return await ensure_root_folder(db, OWNER)


@pytest.fixture
async def other_root(db):
    return await ensure_root_folder(db, OTHER_OWNER)


@pytest.fixture
def archive_queue(session_factory, storage, tmp_path):
    """Queue that is not started; tests call start()/stop() as needed."""
    return ArchiveQueue(
        session_factory=session_factory,
        storage=storage,
        archive_dir=str(tmp_path / "archives"),
    )


@pytest.fixture
async def running_queue(archive_queue):
    await archive_queue.start()
    yield archive_queue
    await archive_queue.stop()


@pytest.fixture
async def client(session_factory, storage, running_queue):
    """HTTP client against the app, wired to the test database and stores."""

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    app.state.archive_queue = running_queue
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def pdf_bytes():
    """Minimal PDF-looking payload."""
    return b"%PDF-1.4\n" + b"0123456789" * 50 + b"\n%%EOF\n"


def auth(owner: str = OWNER) -> dict:
    return {"X-User-Id": owner}
