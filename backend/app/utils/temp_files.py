"""
Scratch-file bookkeeping for in-flight downloads.

Every request writes into the same directory; uniqueness of the allocated
names (uuid4) is what keeps concurrent requests apart, so no locking is needed.
"""
from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


class AssetKind(str, Enum):
    primary_media = "primary-media"
    thumbnail = "thumbnail"


@dataclass(frozen=True)
class TempAsset:
    path: Path
    kind: AssetKind


def sanitize_title(title: str) -> str:
    """Replace every non-alphanumeric character so the result is safe as a file name."""
    return _NON_ALNUM_RE.sub("_", title or "")


class TempFileManager:
    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        self.ready = False
        self.error: Optional[str] = None

    def ensure_directory(self) -> bool:
        """Create the managed directory; failures are logged and recorded, not raised."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.ready = False
            self.error = str(e)
            logger.error("Error creating temp directory %s: %s", self.directory, e)
            return False
        self.ready = True
        self.error = None
        return True

    def allocate(self, base_name: str, extension: str, kind: AssetKind = AssetKind.primary_media) -> TempAsset:
        """Return a unique path under the managed directory. The file is not created."""
        stem = sanitize_title(base_name) or "media"
        ext = _NON_ALNUM_RE.sub("", extension or "") or "bin"
        return TempAsset(path=self.directory / f"{stem}_{uuid.uuid4().hex}.{ext}", kind=kind)

    async def cleanup(self, paths: Iterable[Union[str, Path]]) -> None:
        """Delete each existing path. Missing files are skipped; errors are only logged."""
        for raw in paths:
            path = Path(raw)
            try:
                if not await asyncio.to_thread(path.exists):
                    continue
                await asyncio.to_thread(path.unlink)
                logger.info("Deleted file: %s", path)
            except FileNotFoundError:
                # Removed between the existence check and unlink
                continue
            except OSError as e:
                logger.error("Error deleting file %s: %s", path, e)
