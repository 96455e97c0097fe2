"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from file_manager.config import settings
from file_manager.database import engine, get_db
from file_manager.errors import FileManagerError
from file_manager.models import Base
from file_manager.services.archive_queue import ArchiveQueue

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start the archive worker."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # One queue per process; start() also recovers jobs stranded by a crash
    archive_queue = ArchiveQueue()
    await archive_queue.start()
    app.state.archive_queue = archive_queue

    yield

    # Cleanup
    await archive_queue.stop()
    await engine.dispose()


app = FastAPI(
    title="File Manager API",
    version="1.0.0",
    description="Hierarchical file storage with background zip archives.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FileManagerError)
async def file_manager_error_handler(request: Request, exc: FileManagerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from file_manager.routes.folders import router as folders_router
from file_manager.routes.files import router as files_router
from file_manager.routes.archives import router as archives_router
app.include_router(folders_router)
app.include_router(files_router)
app.include_router(archives_router)
