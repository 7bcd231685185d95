from fastapi import FastAPI, Request
import logging
import os
import subprocess
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pathlib import Path
from logging.config import dictConfig

# Apply logging configuration as early as possible (module import time)
try:
    from .core.logging_config import get_uvicorn_log_config  # type: ignore
    from .core.config import settings as _log_settings  # type: ignore
    _lvl_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    _lvl = getattr(logging, _lvl_name, logging.INFO)
    dictConfig(get_uvicorn_log_config(_lvl, _log_settings.log_dir))
except Exception:
    # Fallback to a simple timestamped format
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%H:%M:%S")

# Support both execution modes:
# - "uvicorn backend.app.main:app" (package-relative imports)
# - "uvicorn main:app" with sys.path pointing to backend/app (flat imports)
try:
    from .api.v1.health import router as health_router  # type: ignore
    from .api.v1.media import router as media_router  # type: ignore
    from .core import messages  # type: ignore
    from .core.config import settings, PROJECT_ROOT  # type: ignore
    from .utils.downloader import DownloadPipeline  # type: ignore
    from .utils.temp_files import TempFileManager  # type: ignore
except Exception:  # pragma: no cover
    from api.v1.health import router as health_router  # type: ignore
    from api.v1.media import router as media_router  # type: ignore
    from core import messages  # type: ignore
    from core.config import settings, PROJECT_ROOT  # type: ignore
    from utils.downloader import DownloadPipeline  # type: ignore
    from utils.temp_files import TempFileManager  # type: ignore

logger = logging.getLogger("backend.app")

tags_metadata = [
    {"name": "media", "description": "Inspect media URLs and download them as MP3 or video."},
    {"name": "health", "description": "Health checks and basic service info."},
]

app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description=(
        "Fetch metadata for a media URL with yt-dlp and stream the media back as a tagged MP3"
        " or as a video file. Nothing is kept after the response ends."
    ),
    openapi_tags=tags_metadata,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    contact={"name": settings.app_name},
    license_info={
        "name": "MIT",
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One pipeline per process; the temp directory is injected, not global
app.state.pipeline = DownloadPipeline(temp_files=TempFileManager(settings.temp_dir))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies are answered like missing fields
    if request.url.path.rstrip("/").endswith("/download"):
        message = messages.URL_OR_FORMAT_MISSING
    else:
        message = messages.URL_MISSING
    logger.debug("Rejected request body for %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"message": message})


@app.on_event("startup")
async def on_startup():
    pipeline: DownloadPipeline = app.state.pipeline
    if not pipeline.temp_files.ensure_directory():
        if settings.temp_dir_strict:
            raise RuntimeError(f"Cannot create temp directory {pipeline.temp_files.directory}: {pipeline.temp_files.error}")
        logger.warning("Running in degraded mode: downloads will fail until %s is writable", pipeline.temp_files.directory)
    else:
        logger.info("TEMP_DIR=%s", pipeline.temp_files.directory)

    # Log yt-dlp version for diagnostics
    try:  # pragma: no cover
        ver = subprocess.check_output([pipeline.executor.binary, "--version"], text=True, timeout=5).strip()
        logger.info(f"yt-dlp version={ver} bin={pipeline.executor.binary}")
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"yt-dlp not usable ({pipeline.executor.binary}): {e}")


# Routes
app.include_router(health_router, prefix="/api/v1")
app.include_router(media_router)


@app.get("/api")
def api_root():
    return {"name": settings.app_name, "version": settings.version}


# Convenience redirects for default FastAPI docs paths
@app.get("/docs", include_in_schema=False)
async def docs_redirect():
    return RedirectResponse(url="/api/docs")


@app.get("/redoc", include_in_schema=False)
async def redoc_redirect():
    return RedirectResponse(url="/api/redoc")


def _static_dir() -> Path:
    if settings.static_dir:
        return Path(settings.static_dir)
    bundled = Path(__file__).resolve().parent / "static"
    if bundled.exists():
        return bundled
    return PROJECT_ROOT / "public"


# Static frontend, mounted last so the API routes above take precedence
static_dir = _static_dir()
if static_dir.is_dir():
    app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
