"""
Per-request download pipeline.

    resolve metadata -> extract asset -> (audio) fetch thumbnail -> (audio) embed tags
        -> stream to client -> cleanup

Every temp file allocated for a request is removed exactly once, whichever way
the request ends: normal end of stream, stream error, client disconnect or a
failure before streaming started. At most one terminal response reaches the
client; see ResponseGuard.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncGenerator, BinaryIO, Callable, Optional

from fastapi.responses import JSONResponse, Response, StreamingResponse

try:  # package mode
    from ..core import messages  # type: ignore
    from ..core.config import settings  # type: ignore
    from ..core.exceptions import (  # type: ignore
        ExternalToolError,
        MediaGrabberError,
        StreamError,
        ValidationError,
    )
    from .images import ImageFetcher  # type: ignore
    from .metadata import MediaMetadata, UNKNOWN_ARTIST, resolve_metadata  # type: ignore
    from .process import ProcessExecutor, resolve_executable  # type: ignore
    from .tagger import TagSet, embed_tags  # type: ignore
    from .temp_files import AssetKind, TempAsset, TempFileManager, sanitize_title  # type: ignore
except Exception:  # pragma: no cover
    from core import messages  # type: ignore
    from core.config import settings  # type: ignore
    from core.exceptions import ExternalToolError, MediaGrabberError, StreamError, ValidationError  # type: ignore
    from utils.images import ImageFetcher  # type: ignore
    from utils.metadata import MediaMetadata, UNKNOWN_ARTIST, resolve_metadata  # type: ignore
    from utils.process import ProcessExecutor, resolve_executable  # type: ignore
    from utils.tagger import TagSet, embed_tags  # type: ignore
    from utils.temp_files import AssetKind, TempAsset, TempFileManager, sanitize_title  # type: ignore

logger = logging.getLogger(__name__)


class MediaFormat(str, Enum):
    audio = "audio"
    video = "video"

    @classmethod
    def from_wire(cls, value: str) -> "MediaFormat":
        """The API speaks file extensions: "mp3" is audio, anything else is video."""
        return cls.audio if value.strip().lower() == "mp3" else cls.video


@dataclass(frozen=True)
class MediaRequest:
    url: str
    format: MediaFormat
    requested_artist: Optional[str] = None

    @classmethod
    def from_payload(cls, url: Optional[str], fmt: Optional[str], artist: Optional[str] = None) -> "MediaRequest":
        url = (url or "").strip()
        fmt = (fmt or "").strip()
        if not url or not fmt:
            raise ValidationError(messages.URL_OR_FORMAT_MISSING)
        return cls(url=url, format=MediaFormat.from_wire(fmt), requested_artist=(artist or "").strip() or None)


@dataclass(frozen=True)
class _Branch:
    extension: str
    media_type: str
    stream_failed: str
    label: str


BRANCHES = {
    MediaFormat.audio: _Branch("mp3", "audio/mpeg", messages.AUDIO_STREAM_FAILED, "MP3"),
    MediaFormat.video: _Branch("mp4", "video/mp4", messages.VIDEO_STREAM_FAILED, "Video"),
}


class PipelineState(str, Enum):
    resolving_metadata = "resolving_metadata"
    extracting_asset = "extracting_asset"
    fetching_thumbnail = "fetching_thumbnail"
    embedding_tags = "embedding_tags"
    streaming = "streaming"
    cleanup = "cleanup"
    terminated = "terminated"


class Outcome(str, Enum):
    completed = "completed"
    failed = "failed"
    disconnected = "disconnected"


class ResponseGuard:
    """Single-assignment cell: the response goes from pending to sent once.

    Every completion path calls claim(); only the first caller gets True and
    may act, the others become no-ops.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sent = False

    @property
    def sent(self) -> bool:
        return self._sent

    def claim(self) -> bool:
        with self._lock:
            if self._sent:
                return False
            self._sent = True
            return True


def build_extract_args(fmt: MediaFormat, out_path: Path, url: str, ffmpeg_path: Optional[str] = None) -> list[str]:
    """yt-dlp arguments for the audio-extraction or best-format video download."""
    if fmt is MediaFormat.audio:
        parts = ["-x", "--audio-format", "mp3"]
    else:
        parts = ["-f", "best"]
    if ffmpeg_path:
        parts.extend(["--ffmpeg-location", ffmpeg_path])
    parts.extend(["-o", str(out_path), url])
    return parts


def resolve_artist(request: MediaRequest, meta: MediaMetadata) -> str:
    return request.requested_artist or meta.uploader or meta.artist or UNKNOWN_ARTIST


class DownloadPipeline:
    """Shared, stateless collaborators; creates one orchestrator per request."""

    def __init__(
        self,
        temp_files: TempFileManager,
        executor: Optional[ProcessExecutor] = None,
        fetcher: Optional[ImageFetcher] = None,
        embedder: Callable[[Path, TagSet], bool] = embed_tags,
        chunk_size: Optional[int] = None,
        ffmpeg_path: Optional[str] = None,
    ) -> None:
        self.temp_files = temp_files
        self.executor = executor or ProcessExecutor()
        self.fetcher = fetcher or ImageFetcher()
        self.embedder = embedder
        self.chunk_size = chunk_size or settings.stream_chunk_size
        self.ffmpeg_path = ffmpeg_path if ffmpeg_path is not None else (
            resolve_executable(settings.ffmpeg_bin, ["ffmpeg.exe", "ffmpeg"]) if settings.ffmpeg_bin else None
        )

    def orchestrator(self, request: MediaRequest) -> "DownloadOrchestrator":
        return DownloadOrchestrator(request, self)


class DownloadOrchestrator:
    def __init__(self, request: MediaRequest, pipeline: DownloadPipeline) -> None:
        self.request = request
        self.pipeline = pipeline
        self.branch = BRANCHES[request.format]
        self.state = PipelineState.resolving_metadata
        self.outcome: Optional[Outcome] = None
        self.metadata: Optional[MediaMetadata] = None
        self.assets: list[TempAsset] = []
        self.tagged: Optional[bool] = None
        self.guard = ResponseGuard()
        self._cleaned = False
        self._handle: Optional[BinaryIO] = None
        self._body: Optional[AsyncGenerator[bytes, None]] = None

    # -- helpers -------------------------------------------------------

    def _enter(self, state: PipelineState) -> None:
        logger.debug("download %s: %s -> %s", self.request.url, self.state.value, state.value)
        self.state = state

    def _settle(self, outcome: Outcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        return True

    def _allocate(self, extension: str, kind: AssetKind) -> TempAsset:
        assert self.metadata is not None
        asset = self.pipeline.temp_files.allocate(self.metadata.title, extension, kind)
        # Tracked before anything is written so cleanup covers half-written files
        self.assets.append(asset)
        return asset

    @property
    def primary_path(self) -> Optional[Path]:
        for asset in self.assets:
            if asset.kind is AssetKind.primary_media:
                return asset.path
        return None

    @property
    def download_filename(self) -> str:
        assert self.metadata is not None
        return f"{sanitize_title(self.metadata.title)}.{self.branch.extension}"

    def build_tags(self, image_path: Optional[Path]) -> TagSet:
        assert self.metadata is not None
        return TagSet(
            title=self.metadata.title,
            artist=resolve_artist(self.request, self.metadata),
            image_path=image_path,
        )

    # -- pipeline ------------------------------------------------------

    async def start(self) -> Response:
        """Run every stage up to streaming; return the response to send.

        Failures before streaming are handled here, once: cleanup, then a
        single 500 JSON body.
        """
        try:
            await self.prepare()
        except MediaGrabberError as exc:
            return await self.fail(exc)
        except asyncio.CancelledError:
            self._close_handle()
            await asyncio.shield(self.cleanup())
            raise
        except Exception as exc:
            logger.exception("Unexpected error while preparing %s", self.request.url)
            return await self.fail(exc)
        return self.response()

    async def prepare(self) -> None:
        pipeline = self.pipeline
        request = self.request

        self._enter(PipelineState.resolving_metadata)
        self.metadata = await resolve_metadata(request.url, pipeline.executor)

        self._enter(PipelineState.extracting_asset)
        primary = self._allocate(self.branch.extension, AssetKind.primary_media)
        await pipeline.executor.run(
            build_extract_args(request.format, primary.path, request.url, pipeline.ffmpeg_path),
            timeout=settings.yt_dlp_timeout,
        )
        if not await asyncio.to_thread(primary.path.is_file):
            raise ExternalToolError(f"yt-dlp did not produce an output file: {primary.path.name}")

        if request.format is MediaFormat.audio:
            self._enter(PipelineState.fetching_thumbnail)
            thumbnail = self._allocate("jpg", AssetKind.thumbnail)
            await pipeline.fetcher.fetch(self.metadata.thumbnail_url, thumbnail.path)

            self._enter(PipelineState.embedding_tags)
            self.tagged = await asyncio.to_thread(pipeline.embedder, primary.path, self.build_tags(thumbnail.path))
            if not self.tagged:
                logger.warning("Failed to write ID3 tags, delivering untagged file: %s", primary.path)

        self._enter(PipelineState.streaming)
        try:
            self._handle = await asyncio.to_thread(primary.path.open, "rb")
        except OSError as e:
            logger.error("Stream error: %s", e)
            raise StreamError(str(e)) from e

    def failure_message(self, exc: BaseException) -> str:
        if self.state is PipelineState.resolving_metadata:
            return messages.with_reason(messages.INFO_FAILED, exc)
        if self.state is PipelineState.streaming:
            return self.branch.stream_failed
        return messages.with_reason(messages.DOWNLOAD_FAILED, exc)

    async def fail(self, exc: BaseException) -> JSONResponse:
        """The single 500 for a failure before streaming; raises StreamError once a response is out."""
        logger.error(
            "Error downloading file: url=%s format=%s state=%s message=%s",
            self.request.url, self.request.format.value, self.state.value, exc,
        )
        message = self.failure_message(exc)
        self._settle(Outcome.failed)
        self._close_handle()
        await self.cleanup()
        self._enter(PipelineState.terminated)
        if not self.guard.claim():
            # Headers are already out; the connection can only be dropped
            raise StreamError(message) from exc
        return JSONResponse(status_code=500, content={"message": message})

    def response(self) -> StreamingResponse:
        assert self.metadata is not None and self._handle is not None
        self._body = self._iter_asset(self._handle)
        headers = {"Content-Disposition": f'attachment; filename="{self.download_filename}"'}
        try:
            headers["Content-Length"] = str(self.primary_path.stat().st_size)  # type: ignore[union-attr]
        except OSError:
            pass
        return PipelineStreamingResponse(self, self._body, media_type=self.branch.media_type, headers=headers)

    async def _iter_asset(self, handle: BinaryIO) -> AsyncGenerator[bytes, None]:
        chunk_size = self.pipeline.chunk_size
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        except OSError as e:
            self._settle(Outcome.failed)
            logger.error("Stream error: %s", e)
            raise StreamError(self.branch.stream_failed) from e
        except (asyncio.CancelledError, GeneratorExit):
            self._settle(Outcome.disconnected)
            raise
        else:
            if self._settle(Outcome.completed):
                logger.info("%s streaming completed: %s", self.branch.label, self.primary_path)
        finally:
            handle.close()

    async def on_connection_closed(self) -> None:
        """Runs once the response is over, whatever ended it."""
        if self._body is not None and self.outcome is None:
            # Suspended mid-stream (disconnect while sending); closing it records the outcome
            await self._body.aclose()
        self._close_handle()
        self._settle(Outcome.disconnected)
        if self.outcome is Outcome.disconnected:
            logger.info("Client disconnected: %s", self.primary_path)
        await self.cleanup()
        self._enter(PipelineState.terminated)

    def _close_handle(self) -> None:
        if self._handle is not None and not self._handle.closed:
            self._handle.close()

    async def cleanup(self) -> None:
        """Delete every temp asset of this request; later calls are no-ops."""
        if self._cleaned:
            return
        self._cleaned = True
        self._enter(PipelineState.cleanup)
        await self.pipeline.temp_files.cleanup(asset.path for asset in self.assets)


class PipelineStreamingResponse(StreamingResponse):
    """StreamingResponse that reports the end of the connection to its orchestrator."""

    def __init__(self, orchestrator: DownloadOrchestrator, content: AsyncGenerator[bytes, None], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self.orchestrator = orchestrator

    async def __call__(self, scope, receive, send) -> None:  # type: ignore[override]
        # Headers are about to go out; no error body can follow them.
        self.orchestrator.guard.claim()
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.orchestrator.on_connection_closed()
