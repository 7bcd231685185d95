from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

try:  # package mode
    from ...core import messages  # type: ignore
    from ...core.exceptions import ExternalToolError, MetadataError, ValidationError  # type: ignore
    from ...schemas.models import DownloadRequest, InfoRead, InfoRequest, MessageRead  # type: ignore
    from ...utils.downloader import DownloadPipeline, MediaRequest  # type: ignore
    from ...utils.metadata import resolve_metadata  # type: ignore
except Exception:  # pragma: no cover
    from core import messages  # type: ignore
    from core.exceptions import ExternalToolError, MetadataError, ValidationError  # type: ignore
    from schemas.models import DownloadRequest, InfoRead, InfoRequest, MessageRead  # type: ignore
    from utils.downloader import DownloadPipeline, MediaRequest  # type: ignore
    from utils.metadata import resolve_metadata  # type: ignore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])

_error_responses = {
    400: {"model": MessageRead, "description": "Missing url or format"},
    500: {"model": MessageRead, "description": "Extraction failed"},
}


def get_pipeline(request: Request) -> DownloadPipeline:
    return request.app.state.pipeline


@router.post("/info", response_model=InfoRead, responses=_error_responses)
async def media_info(body: InfoRequest, pipeline: DownloadPipeline = Depends(get_pipeline)):
    """Return title, thumbnail and artist for a media URL."""
    url = (body.url or "").strip()
    if not url:
        return JSONResponse(status_code=400, content={"message": messages.URL_MISSING})
    try:
        meta = await resolve_metadata(url, pipeline.executor)
    except (ExternalToolError, MetadataError) as e:
        logger.error("Error fetching info: url=%s message=%s", url, e)
        return JSONResponse(
            status_code=500,
            content={"message": messages.with_reason(messages.INFO_FAILED, e)},
        )
    return InfoRead(title=meta.title, thumbnail=meta.thumbnail_url, artist=meta.display_artist)


@router.post(
    "/download",
    responses={
        **_error_responses,
        200: {
            "content": {"audio/mpeg": {}, "video/mp4": {}},
            "description": "The media file as an attachment",
        },
    },
)
async def media_download(body: DownloadRequest, pipeline: DownloadPipeline = Depends(get_pipeline)):
    """Download, tag (mp3 only) and stream the media behind ``url``.

    Temp files are removed once the stream ends, fails or the client goes away.
    """
    try:
        media_request = MediaRequest.from_payload(body.url, body.format, body.artist)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"message": str(e)})
    return await pipeline.orchestrator(media_request).start()
