from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gopro_merge import __version__
from gopro_merge.api.routers import events_router, files_router, health_router, jobs_router, uploads_router
from gopro_merge.core.config import settings
from gopro_merge.models import Base, engine
from gopro_merge.services import RedisEventListener, StorageLayout, notifier

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    Base.metadata.create_all(bind=engine)
    StorageLayout().ensure_roots()

    listener = RedisEventListener(notifier)
    listener.start()
    logger.info("api_started", upload_dir=settings.upload_dir, output_dir=settings.output_dir)
    try:
        yield
    finally:
        listener.stop()


app = FastAPI(
    title="GoPro Merge API",
    description="""
## GoPro chapter merging

Upload the chapter files of GoPro recordings and get each recording back as one
losslessly concatenated `.mp4`.

### Flow

1. Upload chapters to `/api/upload` (keep the returned `session_id`)
2. Open `/ws/sessions/{session_id}` to follow progress
3. Request merges with `/api/process`
4. List results at `/api/files/{session_id}` and download them

### File names

`GH` (H.264) or `GX` (HEVC), two digit chapter, four digit sequence: `GX010150.MP4`.
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Uploads", "description": "Chapter upload and sequence detection"},
        {"name": "Jobs", "description": "Merge requests and job status"},
        {"name": "Files", "description": "Merged outputs"},
        {"name": "Events", "description": "Live job progress"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health_router)
app.include_router(uploads_router, prefix=settings.api_prefix)
app.include_router(jobs_router, prefix=settings.api_prefix)
app.include_router(files_router, prefix=settings.api_prefix)
app.include_router(events_router)


@app.get("/")
async def root():
    return {"service": "gopro-merge-api", "version": __version__, "docs": "/docs"}
