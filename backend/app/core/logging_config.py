from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
import logging


def get_uvicorn_log_config(level: int | str = logging.INFO, log_dir: Optional[str] = None) -> Dict[str, Any]:
    """Return a logging dictConfig for uvicorn and app loggers with time included.

    - Time format: HH:MM:SS
    - Applies to uvicorn error/access logs and our backend.* loggers.
    - With ``log_dir``, also writes error.log (errors only) and combined.log (everything).
    """
    # Normalize level
    if isinstance(level, str):
        try:
            level = getattr(logging, level.upper())
        except Exception:
            level = logging.INFO

    time_format = "%H:%M:%S"
    # Use uvicorn's color-capable formatters, but include timestamps.
    default_fmt = "%(asctime)s %(levelprefix)s [%(name)s] %(message)s"
    access_fmt = "%(asctime)s %(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s"

    formatters: Dict[str, Any] = {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": default_fmt,
            "datefmt": time_format,
            "use_colors": True,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": access_fmt,
            "datefmt": time_format,
            "use_colors": True,
        },
    }
    handlers: Dict[str, Any] = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
            "stream": "ext://sys.stdout",
        },
        "access": {
            "class": "logging.StreamHandler",
            "formatter": "access",
            "level": level,
            "stream": "ext://sys.stdout",
        },
    }
    app_handlers = ["default"]

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        formatters["file"] = {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
        }
        handlers["error_file"] = {
            "class": "logging.FileHandler",
            "formatter": "file",
            "level": logging.ERROR,
            "filename": str(Path(log_dir) / "error.log"),
            "encoding": "utf-8",
        }
        handlers["combined_file"] = {
            "class": "logging.FileHandler",
            "formatter": "file",
            "level": level,
            "filename": str(Path(log_dir) / "combined.log"),
            "encoding": "utf-8",
        }
        app_handlers = ["default", "error_file", "combined_file"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": {
            # Uvicorn loggers
            "uvicorn": {"handlers": app_handlers, "level": level, "propagate": False},
            "uvicorn.error": {"handlers": app_handlers, "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": level, "propagate": False},
            # Our app loggers
            "backend": {"handlers": app_handlers, "level": level, "propagate": False},
            "backend.app": {"handlers": app_handlers, "level": level, "propagate": False},
        },
        "root": {"handlers": ["default"], "level": level},
    }
