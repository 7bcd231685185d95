"""
Exceptions raised by the download pipeline.

Route handlers translate these into a single JSON ``{"message": ...}`` response;
nothing below the API layer knows about HTTP status codes except ``ValidationError``.
"""
from __future__ import annotations

from typing import Optional


class MediaGrabberError(Exception):
    """Base exception for all application-specific errors."""


class ValidationError(MediaGrabberError):
    """Raised when a request is missing a required field (surfaced as 400)."""


class MetadataError(MediaGrabberError):
    """Raised when the extraction tool ran but its metadata is unusable."""


class ExternalToolError(MediaGrabberError):
    """Raised when the extraction tool exits non-zero or cannot be started.

    The message carries the tool's stderr so it can be shown to the user.
    """

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class FetchError(MediaGrabberError):
    """Raised when a remote asset (thumbnail) cannot be downloaded."""


class StreamError(MediaGrabberError):
    """Raised when the produced file cannot be delivered to the client."""
