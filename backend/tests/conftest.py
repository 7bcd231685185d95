from pathlib import Path
import os
import sys
import tempfile
import asyncio
import json

import httpx
import pytest

# Improve asyncio behavior on Windows to reduce event-loop-closed noise
if sys.platform.startswith("win"):
    try:
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())  # type: ignore[attr-defined]
    except Exception:
        pass

# Ensure project root and backend paths are importable for tests
ROOT = Path(__file__).resolve().parents[2]
BACKEND = ROOT / "backend"
APP = BACKEND / "app"

for p in (str(ROOT), str(BACKEND), str(APP)):
    if p not in sys.path:
        sys.path.insert(0, p)

"""
Test configuration

No test talks to the network or needs a real yt-dlp. ``fake_ytdlp`` writes a
small Python script that answers the two invocations the pipeline makes
(--dump-json and -o <path>) and records every argument vector it receives;
thumbnails are served by an httpx.MockTransport.
"""
# Keep the app's default temp dir out of the source tree
os.environ.setdefault("TEMP_DIR", tempfile.mkdtemp(prefix="media-grabber-tests-"))

try:
    from backend.app.main import app  # type: ignore
    from backend.app.api.v1.media import get_pipeline  # type: ignore
    from backend.app.utils.downloader import DownloadPipeline  # type: ignore
    from backend.app.utils.images import ImageFetcher  # type: ignore
    from backend.app.utils.process import ProcessExecutor  # type: ignore
    from backend.app.utils.temp_files import TempFileManager  # type: ignore
except Exception:  # pragma: no cover
    from app.main import app  # type: ignore
    from app.api.v1.media import get_pipeline  # type: ignore
    from app.utils.downloader import DownloadPipeline  # type: ignore
    from app.utils.images import ImageFetcher  # type: ignore
    from app.utils.process import ProcessExecutor  # type: ignore
    from app.utils.temp_files import TempFileManager  # type: ignore


MEDIA_BYTES = b"\xff\xfb\x90\x64" + b"\x00" * (64 * 1024)
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x11" * 256

# URL keywords switch the fake tool's behavior:
#   invalid    --dump-json fails with an error on stderr
#   silent     --dump-json fails without stderr
#   garbage    --dump-json prints something that is not JSON
#   incomplete --dump-json omits the thumbnail
#   noartist   no uploader/artist in the metadata
#   spaced     title with spaces and punctuation
#   huge       very large metadata payload
#   slow       --dump-json sleeps for a while
#   noextract  extraction fails
#   nofile     extraction succeeds without writing the output
#   lingering  extraction writes its output only after 1.5 s
#   missing    the thumbnail URL answers 404
FAKE_YTDLP = r'''
import json
import sys
import time
from pathlib import Path

args = sys.argv[1:]
with Path(__file__).with_name("calls.jsonl").open("a", encoding="utf-8") as log:
    log.write(json.dumps(args) + "\n")
url = args[-1] if args else ""

if "--version" in args:
    print("2024.01.01")
    sys.exit(0)

if "--dump-json" in args:
    if "invalid" in url:
        sys.stderr.write("ERROR: Unsupported URL: " + url + "\n")
        sys.exit(1)
    if "silent" in url:
        sys.exit(2)
    if "garbage" in url:
        print("this is not json")
        sys.exit(0)
    if "slow" in url:
        time.sleep(10)
    info = {
        "title": "Song",
        "thumbnail": "https://img.example.com/cover.jpg",
        "uploader": "Uploader",
        "artist": "Artist",
    }
    if "incomplete" in url:
        del info["thumbnail"]
    if "noartist" in url:
        del info["uploader"]
        del info["artist"]
    if "spaced" in url:
        info["title"] = "My Song / Live!"
    if "missing" in url:
        info["thumbnail"] = "https://img.example.com/missing.jpg"
    if "huge" in url:
        info["description"] = "x" * 200000
    print(json.dumps(info))
    sys.exit(0)

MEDIA = b"\xff\xfb\x90\x64" + b"\x00" * (64 * 1024)

if "-o" in args:
    if "noextract" in url:
        sys.stderr.write("ERROR: Requested format is not available\n")
        sys.exit(1)
    if "nofile" in url:
        sys.exit(0)
    if "lingering" in url:
        time.sleep(1.5)
    Path(args[args.index("-o") + 1]).write_bytes(MEDIA)
    sys.exit(0)

sys.stderr.write("ERROR: unexpected arguments\n")
sys.exit(2)
'''


class FakeYtDlp:
    def __init__(self, directory: Path):
        self.script = directory / "fake_yt_dlp.py"
        self.script.write_text(FAKE_YTDLP, encoding="utf-8")
        self.calls_file = directory / "calls.jsonl"

    def executor(self) -> ProcessExecutor:
        # The interpreter is the binary so the script needs no shebang or exec bit
        return ProcessExecutor(binary=sys.executable, extra_args=[str(self.script)])

    @property
    def calls(self):
        if not self.calls_file.exists():
            return []
        return [json.loads(line) for line in self.calls_file.read_text(encoding="utf-8").splitlines() if line]


class ThumbnailServer:
    """httpx.MockTransport handler that counts requests."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if "missing" in request.url.path:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def fake_ytdlp(tmp_path):
    d = tmp_path / "bin"
    d.mkdir()
    return FakeYtDlp(d)


@pytest.fixture
def thumbnails():
    return ThumbnailServer()


@pytest.fixture
def temp_files(tmp_path):
    manager = TempFileManager(tmp_path / "temp")
    assert manager.ensure_directory()
    return manager


@pytest.fixture
def pipeline(temp_files, fake_ytdlp, thumbnails):
    return DownloadPipeline(
        temp_files=temp_files,
        executor=fake_ytdlp.executor(),
        fetcher=ImageFetcher(transport=thumbnails.transport()),
        chunk_size=4096,
        ffmpeg_path="",
    )


@pytest.fixture
def use_pipeline():
    """Route requests to the given pipeline for the duration of a test."""

    def _use(p):
        app.dependency_overrides[get_pipeline] = lambda: p
        return p

    yield _use
    app.dependency_overrides.pop(get_pipeline, None)


@pytest.fixture
async def client(pipeline, use_pipeline):
    use_pipeline(pipeline)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

