from __future__ import annotations

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


# Load environment variables from .env files without overriding existing env vars.
# Priority: backend/.env first (co-located with app), then project-root/.env as fallback.
from pathlib import Path
_backend_env = Path(__file__).resolve().parents[2] / ".env"
_root_env = Path(__file__).resolve().parents[3] / ".env"
load_dotenv(dotenv_path=str(_backend_env), override=False)
load_dotenv(dotenv_path=str(_root_env), override=False)

PROJECT_ROOT = Path(__file__).resolve().parents[3]

APP_NAME = "Media Grabber API"


def read_version(version_file: Path = PROJECT_ROOT / "VERSION") -> str:
    """Semantic version from the repository VERSION file; "0.0.0" when it is missing or empty."""
    try:
        return version_file.read_text(encoding="utf-8").strip() or "0.0.0"
    except OSError:
        return "0.0.0"


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default) not in {"0", "false", "False", "FALSE", ""}


def _env_float(name: str) -> Optional[float]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class Settings(BaseModel):
    # Name is sourced from code, not environment
    app_name: str = APP_NAME
    # Version comes from the VERSION file, not environment
    version: str = read_version()

    # CORS (the bundled frontend is served by this app on port 3000)
    cors_origins: List[str] = _split_csv(os.environ.get("CORS_ORIGINS")) or [
        "http://localhost:3000",
    ]

    # Scratch directory for in-flight downloads; created once at startup
    temp_dir: str = os.environ.get("TEMP_DIR", str((PROJECT_ROOT / "temp").resolve()))
    # Refuse to start when the temp directory cannot be created
    temp_dir_strict: bool = _env_flag("TEMP_DIR_STRICT")

    # External tools
    yt_dlp_bin: Optional[str] = os.environ.get("YT_DLP_BIN") or None
    ffmpeg_bin: Optional[str] = os.environ.get("FFMPEG_BIN") or None
    yt_dlp_timeout: Optional[float] = _env_float("YT_DLP_TIMEOUT")

    # Upper bound for a --dump-json payload
    metadata_max_bytes: int = int(os.environ.get("METADATA_MAX_BYTES", str(16 * 1024 * 1024)))
    thumbnail_timeout: float = float(os.environ.get("THUMBNAIL_TIMEOUT", "30"))
    stream_chunk_size: int = int(os.environ.get("STREAM_CHUNK_SIZE", str(64 * 1024)))

    # Static frontend; falls back to <root>/public when unset
    static_dir: Optional[str] = os.environ.get("STATIC_DIR") or None

    # When set, error.log and combined.log are written here
    log_dir: Optional[str] = os.environ.get("LOG_DIR") or None


settings = Settings()
