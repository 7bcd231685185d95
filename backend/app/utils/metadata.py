from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

try:  # package mode
    from ..core.config import settings  # type: ignore
    from ..core.exceptions import MetadataError  # type: ignore
    from ..core import messages  # type: ignore
    from .process import ProcessExecutor  # type: ignore
except Exception:  # pragma: no cover
    from core.config import settings  # type: ignore
    from core.exceptions import MetadataError  # type: ignore
    from core import messages  # type: ignore
    from utils.process import ProcessExecutor  # type: ignore

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"


@dataclass(frozen=True)
class MediaMetadata:
    title: str
    thumbnail_url: str
    uploader: Optional[str] = None
    artist: Optional[str] = None

    @property
    def display_artist(self) -> str:
        return self.uploader or self.artist or UNKNOWN_ARTIST


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_metadata(payload: bytes) -> MediaMetadata:
    """Build MediaMetadata from a yt-dlp --dump-json payload."""
    try:
        info = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise MetadataError(f"Invalid metadata JSON: {e}") from e
    if not isinstance(info, dict):
        raise MetadataError("Invalid metadata JSON: expected an object")

    title = _clean(info.get("title"))
    thumbnail = _clean(info.get("thumbnail"))
    if not title or not thumbnail:
        raise MetadataError(messages.METADATA_INCOMPLETE)

    return MediaMetadata(
        title=title,
        thumbnail_url=thumbnail,
        uploader=_clean(info.get("uploader")),
        artist=_clean(info.get("artist")),
    )


async def resolve_metadata(url: str, executor: ProcessExecutor) -> MediaMetadata:
    """Dump and validate metadata for ``url``.

    ExternalToolError (the tool failed) propagates unchanged; MetadataError
    means the tool succeeded but returned something unusable.
    """
    stdout = await executor.run(
        ["--dump-json", url],
        max_output_bytes=settings.metadata_max_bytes,
        timeout=settings.yt_dlp_timeout,
    )
    meta = parse_metadata(stdout)
    logger.debug("Resolved metadata for %s: title=%r", url, meta.title)
    return meta
