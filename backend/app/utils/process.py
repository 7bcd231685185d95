"""
Async runner for the yt-dlp executable.

Arguments are always passed as a discrete vector to ``create_subprocess_exec``;
nothing is ever joined into a shell command line.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
from pathlib import Path
from typing import Optional, Sequence

try:  # package mode
    from ..core.config import settings  # type: ignore
    from ..core.exceptions import ExternalToolError  # type: ignore
except Exception:  # pragma: no cover
    from core.config import settings  # type: ignore
    from core.exceptions import ExternalToolError  # type: ignore

logger = logging.getLogger(__name__)

# Only the tail of stderr is kept; yt-dlp prints the actual error last.
STDERR_TAIL_BYTES = 64 * 1024
_READ_SIZE = 64 * 1024


class OutputLimitExceeded(Exception):
    pass


def resolve_executable(config_value: Optional[str], exe_names: list[str]) -> Optional[str]:
    """Return absolute path to executable if found, else None.

    Search order:
    1) If config_value provided: try as absolute; if relative, try relative to project root and CWD.
    2) Typical venv locations under the project root (.venv, venv).
    3) PATH lookup via shutil.which for each exe name.
    """
    project_root = Path(__file__).resolve().parents[3]

    candidates: list[Path] = []
    if config_value:
        p = Path(config_value)
        candidates.append(p if p.is_absolute() else (project_root / p))
        if not p.is_absolute():
            candidates.append(Path.cwd() / p)
    for vname in (".venv", "venv"):
        for sub in ("Scripts", "bin"):
            for n in exe_names:
                candidates.append(project_root / vname / sub / n)

    for cand in candidates:
        if cand.is_file():
            return str(cand.resolve())
    for n in exe_names:
        which = shutil.which(n)
        if which:
            return which
    return None


def resolve_extra_args() -> list[str]:
    """Resolve additional yt-dlp CLI arguments from env YT_DLP_EXTRA_ARGS."""
    raw = (os.environ.get("YT_DLP_EXTRA_ARGS", "") or "").strip()
    if not raw:
        return []
    try:
        return shlex.split(raw)
    except ValueError:
        # Unbalanced quotes; fall back to whitespace split
        return [p for p in raw.split() if p]


async def _drain(stream: asyncio.StreamReader, limit: Optional[int]) -> bytes:
    buf = bytearray()
    while True:
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            return bytes(buf)
        if limit is not None and len(buf) + len(chunk) > limit:
            raise OutputLimitExceeded()
        buf.extend(chunk)


async def _drain_tail(stream: asyncio.StreamReader, keep: int) -> bytes:
    buf = bytearray()
    while True:
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > keep:
            del buf[: len(buf) - keep]


class ProcessExecutor:
    """Run yt-dlp and collect its output.

    ``binary`` defaults to the resolved ``YT_DLP_BIN``/venv/PATH executable.
    """

    def __init__(self, binary: Optional[str] = None, extra_args: Optional[Sequence[str]] = None) -> None:
        self.binary = (
            binary
            or resolve_executable(settings.yt_dlp_bin, ["yt-dlp.exe", "yt-dlp"])
            or settings.yt_dlp_bin
            or "yt-dlp"
        )
        self.extra_args = list(extra_args) if extra_args is not None else resolve_extra_args()

    async def run(
        self,
        args: Sequence[str],
        *,
        max_output_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Run the tool with ``args`` and return its stdout.

        Raises ExternalToolError on a non-zero exit (message = stderr), when the
        executable is missing, when stdout exceeds ``max_output_bytes`` or when
        ``timeout`` elapses. Cancelling the call kills the process before the
        cancellation propagates.
        """
        cmd = [self.binary, *self.extra_args, *args]
        logger.debug("Running: %s", " ".join(shlex.quote(c) for c in cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"Executable not found: {self.binary}. Check YT_DLP_BIN or PATH.",
            ) from e
        except PermissionError as e:
            raise ExternalToolError(f"Executable not runnable: {self.binary}") from e

        assert proc.stdout is not None and proc.stderr is not None
        collect = asyncio.gather(
            _drain(proc.stdout, max_output_bytes),
            _drain_tail(proc.stderr, STDERR_TAIL_BYTES),
        )
        try:
            stdout, stderr = await asyncio.wait_for(collect, timeout=timeout)
            returncode = await proc.wait()
        except OutputLimitExceeded:
            await _kill(proc)
            raise ExternalToolError(
                f"yt-dlp output exceeded {max_output_bytes} bytes",
            ) from None
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ExternalToolError(f"yt-dlp timed out after {timeout:g}s") from None
        except asyncio.CancelledError:
            # The child must be gone before the caller deletes its output path
            await asyncio.shield(_kill(proc))
            raise

        if returncode != 0:
            err_text = stderr.decode("utf-8", errors="replace").strip()
            logger.debug("yt-dlp exited with code %s", returncode)
            raise ExternalToolError(err_text or "yt-dlp failed", returncode=returncode, stderr=err_text)
        return stdout


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
