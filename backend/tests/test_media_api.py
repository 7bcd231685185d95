import asyncio
import io

from mutagen.id3 import ID3

try:
    from backend.app.core import messages
    from backend.app.utils.downloader import DownloadPipeline
    from backend.app.utils.images import ImageFetcher
except Exception:  # pragma: no cover
    from app.core import messages
    from app.utils.downloader import DownloadPipeline
    from app.utils.images import ImageFetcher

from conftest import JPEG_BYTES, MEDIA_BYTES

OK_URL = "https://media.example/watch?v=ok"


def _left(pipeline):
    return list(pipeline.temp_files.directory.iterdir())


def _read_tags(content: bytes):
    return ID3(io.BytesIO(content))


# -- /info -------------------------------------------------------------------


async def test_info_returns_metadata(client):
    r = await client.post("/info", json={"url": OK_URL})
    assert r.status_code == 200
    assert r.json() == {"title": "Song", "thumbnail": "https://img.example.com/cover.jpg", "artist": "Uploader"}


async def test_info_artist_fallback(client):
    r = await client.post("/info", json={"url": "https://media.example/noartist"})
    assert r.status_code == 200
    assert r.json()["artist"] == "Unknown Artist"


async def test_info_missing_url(client, fake_ytdlp):
    for body in ({}, {"url": ""}, {"url": None}):
        r = await client.post("/info", json=body)
        assert r.status_code == 400
        assert r.json() == {"message": messages.URL_MISSING}
    assert fake_ytdlp.calls == []


async def test_info_malformed_body(client):
    r = await client.post("/info", content=b"{not json", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"message": messages.URL_MISSING}


async def test_info_tool_failure_returns_stderr(client):
    r = await client.post("/info", json={"url": "https://media.example/invalid"})
    assert r.status_code == 500
    msg = r.json()["message"]
    assert msg.startswith(messages.INFO_FAILED + ": ")
    assert "Unsupported URL" in msg


async def test_info_bad_metadata(client):
    r = await client.post("/info", json={"url": "https://media.example/incomplete"})
    assert r.status_code == 500
    assert r.json()["message"] == messages.with_reason(messages.INFO_FAILED, messages.METADATA_INCOMPLETE)

    r = await client.post("/info", json={"url": "https://media.example/garbage"})
    assert r.status_code == 500
    assert "Invalid metadata JSON" in r.json()["message"]


# -- /download -----------------------------------------------------------------


async def test_download_mp3_is_tagged_and_cleaned_up(client, pipeline, thumbnails):
    r = await client.post("/download", json={"url": OK_URL, "format": "mp3"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "audio/mpeg"
    assert r.headers["content-disposition"] == 'attachment; filename="Song.mp3"'
    assert int(r.headers["content-length"]) == len(r.content) > len(MEDIA_BYTES)

    tags = _read_tags(r.content)
    assert tags["TIT2"].text == ["Song"]
    assert tags["TPE1"].text == ["Uploader"]
    assert tags.getall("APIC")[0].data == JPEG_BYTES

    assert thumbnails.requests == ["https://img.example.com/cover.jpg"]
    assert _left(pipeline) == []


async def test_download_requested_artist_wins(client, pipeline):
    r = await client.post("/download", json={"url": OK_URL, "format": "mp3", "artist": "Someone"})
    assert r.status_code == 200
    assert _read_tags(r.content)["TPE1"].text == ["Someone"]
    assert _left(pipeline) == []


async def test_download_sanitizes_file_name(client):
    r = await client.post("/download", json={"url": "https://media.example/spaced", "format": "mp3"})
    assert r.status_code == 200
    assert r.headers["content-disposition"] == 'attachment; filename="My_Song___Live_.mp3"'
    # Tags keep the original title
    assert _read_tags(r.content)["TIT2"].text == ["My Song / Live!"]


async def test_download_video(client, pipeline, fake_ytdlp, thumbnails):
    r = await client.post("/download", json={"url": OK_URL, "format": "mp4"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "video/mp4"
    assert r.headers["content-disposition"] == 'attachment; filename="Song.mp4"'
    assert r.content == MEDIA_BYTES

    extract = fake_ytdlp.calls[-1]
    assert extract[:2] == ["-f", "best"]
    assert extract[-1] == OK_URL
    assert extract[extract.index("-o") + 1].endswith(".mp4")
    assert thumbnails.requests == []
    assert _left(pipeline) == []


async def test_download_audio_extraction_args(client, fake_ytdlp):
    r = await client.post("/download", json={"url": OK_URL, "format": "mp3"})
    assert r.status_code == 200
    dump, extract = fake_ytdlp.calls
    assert dump == ["--dump-json", OK_URL]
    assert extract[:3] == ["-x", "--audio-format", "mp3"]
    assert extract[-1] == OK_URL
    assert "--ffmpeg-location" not in extract


async def test_download_missing_fields_spawn_nothing(client, pipeline, fake_ytdlp):
    for body in ({}, {"url": OK_URL}, {"format": "mp3"}, {"url": "", "format": "mp3"}, {"url": OK_URL, "format": ""}):
        r = await client.post("/download", json=body)
        assert r.status_code == 400
        assert r.json() == {"message": messages.URL_OR_FORMAT_MISSING}
    assert fake_ytdlp.calls == []
    assert _left(pipeline) == []


async def test_download_malformed_body(client, fake_ytdlp):
    r = await client.post("/download", content=b"[]", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"message": messages.URL_OR_FORMAT_MISSING}
    assert fake_ytdlp.calls == []


async def test_download_info_failure(client, pipeline):
    r = await client.post("/download", json={"url": "https://media.example/invalid", "format": "mp3"})
    assert r.status_code == 500
    msg = r.json()["message"]
    assert msg.startswith(messages.INFO_FAILED + ": ")
    assert "Unsupported URL" in msg
    assert _left(pipeline) == []


async def test_download_extraction_failure(client, pipeline):
    r = await client.post("/download", json={"url": "https://media.example/noextract", "format": "mp3"})
    assert r.status_code == 500
    msg = r.json()["message"]
    assert msg.startswith(messages.DOWNLOAD_FAILED + ": ")
    assert "Requested format is not available" in msg
    assert _left(pipeline) == []


async def test_download_without_output_file(client, pipeline):
    r = await client.post("/download", json={"url": "https://media.example/nofile", "format": "mp4"})
    assert r.status_code == 500
    assert r.json()["message"].startswith(messages.DOWNLOAD_FAILED + ": ")
    assert _left(pipeline) == []


async def test_download_thumbnail_failure(client, pipeline):
    r = await client.post("/download", json={"url": "https://media.example/missing", "format": "mp3"})
    assert r.status_code == 500
    assert "HTTP 404" in r.json()["message"]
    assert _left(pipeline) == []


async def test_download_tagging_failure_still_delivers(temp_files, fake_ytdlp, thumbnails, use_pipeline, client):
    calls = []

    def failing_embedder(path, tags):
        calls.append((path, tags))
        return False

    pipeline = use_pipeline(
        DownloadPipeline(
            temp_files=temp_files,
            executor=fake_ytdlp.executor(),
            fetcher=ImageFetcher(transport=thumbnails.transport()),
            embedder=failing_embedder,
            ffmpeg_path="",
        )
    )
    r = await client.post("/download", json={"url": OK_URL, "format": "mp3"})
    assert r.status_code == 200
    assert r.content == MEDIA_BYTES
    assert len(calls) == 1
    assert calls[0][1].artist == "Uploader"
    assert calls[0][1].image_path is not None
    assert _left(pipeline) == []


async def test_download_stream_open_failure(temp_files, fake_ytdlp, thumbnails, use_pipeline, client):
    def vanishing_embedder(path, tags):
        # The produced file disappears before it can be opened for streaming
        path.unlink()
        return True

    pipeline = use_pipeline(
        DownloadPipeline(
            temp_files=temp_files,
            executor=fake_ytdlp.executor(),
            fetcher=ImageFetcher(transport=thumbnails.transport()),
            embedder=vanishing_embedder,
            ffmpeg_path="",
        )
    )
    r = await client.post("/download", json={"url": OK_URL, "format": "mp3"})
    assert r.status_code == 500
    assert r.json() == {"message": messages.AUDIO_STREAM_FAILED}
    assert _left(pipeline) == []


async def test_concurrent_downloads_are_isolated(client, pipeline, fake_ytdlp):
    responses = await asyncio.gather(
        *(client.post("/download", json={"url": OK_URL, "format": fmt}) for fmt in ("mp3", "mp3", "mp4", "mp4"))
    )
    assert [r.status_code for r in responses] == [200, 200, 200, 200]
    assert responses[2].content == responses[3].content == MEDIA_BYTES

    outputs = [c[c.index("-o") + 1] for c in fake_ytdlp.calls if "-o" in c]
    assert len(outputs) == 4
    assert len(set(outputs)) == 4
    assert _left(pipeline) == []
