from __future__ import annotations

from typing import Optional
from pydantic import BaseModel


class InfoRequest(BaseModel):
    # Optional so a missing url becomes our own 400 instead of a 422
    url: Optional[str] = None


class InfoRead(BaseModel):
    title: str
    thumbnail: str
    artist: str


class DownloadRequest(BaseModel):
    url: Optional[str] = None
    # "mp3" for audio, anything else (usually "mp4") for video
    format: Optional[str] = None
    artist: Optional[str] = None


class MessageRead(BaseModel):
    message: str


class HealthRead(BaseModel):
    status: str
    temp_dir: Optional[str] = None
    error: Optional[str] = None
