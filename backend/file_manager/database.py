"""Async SQLAlchemy engine and session factory.

Usage in routes:
    from file_manager.database import get_db

    @router.get("/folders")
    async def list_folders(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Folder))
        return result.scalars().all()
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from file_manager.config import settings


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine. SQLite gets FK enforcement and no pool sizing."""
    if url.startswith("sqlite"):
        sqlite_engine = create_async_engine(url, echo=False)
        event.listen(sqlite_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine
    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
