from fastapi import APIRouter, Depends

try:
    from ...core.config import settings  # type: ignore
    from ...schemas.models import HealthRead  # type: ignore
    from .media import get_pipeline  # type: ignore
except Exception:  # pragma: no cover
    from core.config import settings  # type: ignore
    from schemas.models import HealthRead  # type: ignore
    from api.v1.media import get_pipeline  # type: ignore

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthRead, response_model_exclude_none=True)
def health(pipeline=Depends(get_pipeline)):
    """Report "degraded" when the temp directory could not be created at startup."""
    temp_files = pipeline.temp_files
    if temp_files.ready:
        return HealthRead(status="ok")
    return HealthRead(status="degraded", temp_dir=str(temp_files.directory), error=temp_files.error)


@router.get("/info")
def info():
    """Return application info: name and version."""
    return {"name": settings.app_name, "version": settings.version}
