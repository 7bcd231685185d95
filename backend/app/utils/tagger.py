from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mutagen import MutagenError
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, TIT2, TPE1

try:  # package mode
    from .images import sniff_image_mime  # type: ignore
except Exception:  # pragma: no cover
    from utils.images import sniff_image_mime  # type: ignore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagSet:
    title: str
    artist: str
    image_path: Optional[Path] = None


def embed_tags(file_path: Path, tags: TagSet) -> bool:
    """Write title, artist and cover art into the file's ID3 tag, in place.

    Returns False instead of raising; an untagged file is still deliverable.
    """
    try:
        try:
            id3 = ID3(str(file_path))
        except ID3NoHeaderError:
            id3 = ID3()

        id3.delall("TIT2")
        id3.delall("TPE1")
        id3.add(TIT2(encoding=3, text=tags.title))
        id3.add(TPE1(encoding=3, text=tags.artist))

        if tags.image_path is not None:
            image = Path(tags.image_path).read_bytes()
            id3.delall("APIC")
            id3.add(
                APIC(
                    encoding=3,
                    mime=sniff_image_mime(image),
                    type=3,  # front cover
                    desc="Cover",
                    data=image,
                )
            )

        id3.update_to_v23()
        id3.save(str(file_path), v2_version=3)
        return True
    except (MutagenError, OSError) as e:
        logger.warning("Failed to write ID3 tags to %s: %s", file_path, e)
        return False
