"""Tests for stream source selection and the built-in sources."""

import asyncio
import sys

import httpx
import pytest

from livecast.domain.captioning.errors import SourceUnavailable
from livecast.domain.captioning.sources import (
    FfmpegStreamSource,
    HttpStreamSource,
    SyntheticStreamSource,
    build_stream_source,
)


async def _read_all(source, locator: str) -> bytes:
    return b"".join([data async for data in source.read(locator)])


def _fake_ffmpeg(tmp_path, body: str) -> str:
    """Shell script standing in for the ffmpeg binary; arguments are ignored."""
    script = tmp_path / "ffmpeg"
    script.write_text("#!/bin/sh\n" + body + "\n")
    script.chmod(0o755)
    return str(script)


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


@pytest.mark.parametrize(
    ("locator", "expected"),
    [
        ("synthetic://demo?seconds=5", SyntheticStreamSource),
        ("https://media.example.com/live/stream.pcm", HttpStreamSource),
        ("http://media.example.com/audio.RAW", HttpStreamSource),
        ("https://media.example.com/live/index.m3u8", FfmpegStreamSource),
        ("rtmp://ingest.example.com/live/key", FfmpegStreamSource),
        ("/var/media/recording.mp4", FfmpegStreamSource),
    ],
)
def test_build_stream_source(locator, expected):
    assert isinstance(build_stream_source(locator), expected)


@pytest.mark.asyncio
async def test_synthetic_source_emits_requested_duration():
    source = SyntheticStreamSource(bytes_per_second=1000, frame_seconds=0.25)

    data = await _read_all(source, "synthetic://demo?seconds=2.1&rate=0")

    assert len(data) == 2100
    assert set(data) == {0}


def test_ffmpeg_command_decodes_to_pcm():
    source = FfmpegStreamSource(sample_rate=16000, channels=1)

    command = source.build_command("rtmp://ingest.example.com/live/key")

    assert command[0] == "ffmpeg"
    assert command[command.index("-i") + 1] == "rtmp://ingest.example.com/live/key"
    assert command[command.index("-ar") + 1] == "16000"
    assert command[-1] == "pipe:1"


@pytest.mark.asyncio
async def test_missing_ffmpeg_binary_is_source_unavailable():
    source = FfmpegStreamSource(ffmpeg_path="/nonexistent/ffmpeg")

    with pytest.raises(SourceUnavailable):
        await _read_all(source, "rtmp://ingest.example.com/live/key")


@pytest.mark.asyncio
async def test_http_source_streams_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"\x01" * 500))
    source = HttpStreamSource(transport=transport)

    data = await _read_all(source, "https://media.example.com/live/stream.pcm")

    assert data == b"\x01" * 500


@pytest.mark.asyncio
async def test_http_error_status_is_source_unavailable():
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    source = HttpStreamSource(transport=transport)

    with pytest.raises(SourceUnavailable) as exc_info:
        await _read_all(source, "https://media.example.com/live/stream.pcm")

    assert exc_info.value.reason == "HTTP 404"


@pytest.mark.asyncio
async def test_http_connection_error_is_source_unavailable():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    source = HttpStreamSource(transport=httpx.MockTransport(refuse))

    with pytest.raises(SourceUnavailable):
        await _read_all(source, "https://media.example.com/live/stream.pcm")


def test_ffmpeg_output_format_follows_sample_width():
    command = FfmpegStreamSource(sample_width=4).build_command("rtmp://ingest.example.com/live/key")

    assert command[command.index("-f") + 1] == "s32le"
    assert command[command.index("-acodec") + 1] == "pcm_s32le"


def test_ffmpeg_rejects_unsupported_sample_width():
    with pytest.raises(ValueError):
        FfmpegStreamSource(sample_width=3)


@posix_only
@pytest.mark.asyncio
async def test_ffmpeg_noisy_stderr_does_not_block_audio(tmp_path):
    ffmpeg = _fake_ffmpeg(
        tmp_path,
        "head -c 300000 /dev/zero | tr '\\000' 'e' >&2\nexec head -c 64000 /dev/zero",
    )
    source = FfmpegStreamSource(ffmpeg_path=ffmpeg, read_timeout=5.0)

    data = await asyncio.wait_for(_read_all(source, "rtmp://ingest.example.com/live/key"), 10.0)

    assert len(data) == 64000


@posix_only
@pytest.mark.asyncio
async def test_ffmpeg_failure_reports_stderr_tail(tmp_path):
    ffmpeg = _fake_ffmpeg(tmp_path, "echo 'Connection refused' >&2\nexit 1")
    source = FfmpegStreamSource(ffmpeg_path=ffmpeg)

    with pytest.raises(SourceUnavailable) as exc_info:
        await asyncio.wait_for(_read_all(source, "rtmp://ingest.example.com/live/key"), 10.0)

    assert "Connection refused" in exc_info.value.reason


@posix_only
@pytest.mark.asyncio
async def test_ffmpeg_silent_stream_is_source_unavailable(tmp_path):
    ffmpeg = _fake_ffmpeg(tmp_path, "printf 'abcd'\nexec sleep 30")
    source = FfmpegStreamSource(ffmpeg_path=ffmpeg, read_timeout=0.2)
    received = bytearray()

    async def consume():
        async for data in source.read("rtmp://ingest.example.com/live/key"):
            received.extend(data)

    with pytest.raises(SourceUnavailable) as exc_info:
        await asyncio.wait_for(consume(), 10.0)

    assert received == b"abcd"
    assert "no data from ffmpeg" in exc_info.value.reason


@posix_only
@pytest.mark.asyncio
async def test_cancelling_ffmpeg_reader_stops_the_process(tmp_path):
    ffmpeg = _fake_ffmpeg(tmp_path, "exec sleep 30")
    source = FfmpegStreamSource(ffmpeg_path=ffmpeg, read_timeout=30.0)
    task = asyncio.create_task(_read_all(source, "rtmp://ingest.example.com/live/key"))
    await asyncio.sleep(0.2)

    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, 5.0)
