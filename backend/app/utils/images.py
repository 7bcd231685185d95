from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

try:  # package mode
    from ..core.config import settings  # type: ignore
    from ..core.exceptions import FetchError  # type: ignore
except Exception:  # pragma: no cover
    from core.config import settings  # type: ignore
    from core.exceptions import FetchError  # type: ignore

logger = logging.getLogger(__name__)

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_GIF_MAGIC = (b"GIF87a", b"GIF89a")


def sniff_image_mime(data: bytes) -> str:
    """Guess an image MIME type from its leading bytes; JPEG when unknown."""
    if data.startswith(_PNG_MAGIC):
        return "image/png"
    if data.startswith(_GIF_MAGIC):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


class ImageFetcher:
    """Download remote images (cover art) straight to disk.

    The body is streamed chunk by chunk; a partial file left by a failed
    transfer is not removed here, the caller owns the destination path.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.thumbnail_timeout
        self._transport = transport

    async def fetch(self, url: str, dest: Path) -> Path:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise FetchError(f"Failed to download thumbnail: HTTP {response.status_code}")
                    with dest.open("wb") as f:
                        async for chunk in response.aiter_bytes():
                            await asyncio.to_thread(f.write, chunk)
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to download thumbnail: {e}") from e
        except OSError as e:
            raise FetchError(f"Failed to write thumbnail {dest}: {e}") from e
        logger.debug("Fetched %s -> %s", url, dest)
        return dest
