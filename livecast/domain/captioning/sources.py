"""Stream source collaborators.

The pipeline only needs "open, read sequentially, detect end, detect error":
a source yields raw PCM bytes for a locator, returns on a clean end of stream
and raises `SourceUnavailable` when the stream cannot be read.

- `HttpStreamSource`: raw PCM served over HTTP(S) (`.pcm` / `.raw` paths)
- `FfmpegStreamSource`: anything ffmpeg can demux (RTMP, HLS, media over HTTP),
  decoded to raw PCM of the configured sample width on stdout
- `SyntheticStreamSource`: `synthetic://` locators, paced silence for demos
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import Protocol
from urllib.parse import parse_qs, urlparse

import httpx
from loguru import logger

from livecast.domain.captioning.errors import SourceUnavailable

READ_SIZE = 8192


class StreamSource(Protocol):
    def read(self, locator: str) -> AsyncIterator[bytes]: ...


class HttpStreamSource:
    """Streams raw PCM bytes from an HTTP(S) endpoint."""

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport

    async def read(self, locator: str) -> AsyncIterator[bytes]:
        try:
            client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
            async with client:
                async with client.stream("GET", locator) as response:
                    if response.status_code >= 400:
                        raise SourceUnavailable(locator, f"HTTP {response.status_code}")
                    async for data in response.aiter_bytes(READ_SIZE):
                        if data:
                            yield data
        except httpx.HTTPError as exc:
            raise SourceUnavailable(locator, f"{type(exc).__name__}: {exc}") from exc


# ffmpeg raw output format and codec per sample width in bytes
PCM_FORMATS = {
    1: ("u8", "pcm_u8"),
    2: ("s16le", "pcm_s16le"),
    4: ("s32le", "pcm_s32le"),
}
STDERR_TAIL_BYTES = 2000


class FfmpegStreamSource:
    """Decodes any ffmpeg-readable stream to PCM through an ffmpeg subprocess.

    stderr is drained while stdout is read, keeping only its last bytes for the
    error message. A read that produces nothing for `read_timeout` seconds
    raises `SourceUnavailable`.
    """

    def __init__(
        self,
        *,
        sample_rate: int = 16000,
        sample_width: int = 2,
        channels: int = 1,
        read_timeout: float = 30.0,
        ffmpeg_path: str = "ffmpeg",
    ) -> None:
        if sample_width not in PCM_FORMATS:
            raise ValueError(f"Unsupported sample width for ffmpeg output: {sample_width}")
        self._sample_rate = sample_rate
        self._sample_width = sample_width
        self._channels = channels
        self._read_timeout = read_timeout
        self._ffmpeg_path = ffmpeg_path

    def build_command(self, locator: str) -> list[str]:
        output_format, codec = PCM_FORMATS[self._sample_width]
        return [
            self._ffmpeg_path,
            "-nostdin",
            "-loglevel", "error",
            "-i", locator,
            "-vn",
            "-ac", str(self._channels),
            "-ar", str(self._sample_rate),
            "-f", output_format,
            "-acodec", codec,
            "pipe:1",
        ]

    @staticmethod
    async def _drain_stderr(stream: asyncio.StreamReader, tail: bytearray) -> None:
        while True:
            data = await stream.read(READ_SIZE)
            if not data:
                return
            tail.extend(data)
            del tail[:-STDERR_TAIL_BYTES]

    async def read(self, locator: str) -> AsyncIterator[bytes]:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(locator),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SourceUnavailable(locator, f"failed to start ffmpeg: {exc}") from exc

        assert process.stdout is not None and process.stderr is not None
        stderr_tail = bytearray()
        stderr_task = asyncio.create_task(self._drain_stderr(process.stderr, stderr_tail))
        try:
            while True:
                try:
                    data = await asyncio.wait_for(
                        process.stdout.read(READ_SIZE), timeout=self._read_timeout
                    )
                except TimeoutError as exc:
                    raise SourceUnavailable(
                        locator, f"no data from ffmpeg for {self._read_timeout}s"
                    ) from exc
                if not data:
                    break
                yield data

            returncode = await process.wait()
            if returncode != 0:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(asyncio.shield(stderr_task), timeout=1.0)
                reason = stderr_tail.decode(errors="replace").strip()[-500:]
                if not reason:
                    reason = f"exit code {returncode}"
                raise SourceUnavailable(locator, f"ffmpeg failed: {reason}")
        finally:
            stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            # Reaping needs both pipes at EOF, so read whatever is left.
            await process.communicate()


class SyntheticStreamSource:
    """Paced silence: `synthetic://demo?seconds=120&rate=1.0`.

    `rate` scales real time; `rate=0` emits as fast as the consumer reads.
    """

    def __init__(self, *, bytes_per_second: int = 32000, frame_seconds: float = 0.5) -> None:
        self._bytes_per_second = bytes_per_second
        self._frame_seconds = frame_seconds

    async def read(self, locator: str) -> AsyncIterator[bytes]:
        params = parse_qs(urlparse(locator).query)
        seconds = float(params.get("seconds", ["60"])[0])
        rate = float(params.get("rate", ["1.0"])[0])

        frame_bytes = int(self._bytes_per_second * self._frame_seconds)
        frame_bytes -= frame_bytes % 2
        remaining = int(self._bytes_per_second * seconds)
        while remaining > 0:
            size = min(frame_bytes, remaining)
            remaining -= size
            if rate > 0:
                await asyncio.sleep(self._frame_seconds / rate)
            yield bytes(size)


def build_stream_source(
    locator: str,
    *,
    sample_rate: int = 16000,
    sample_width: int = 2,
    channels: int = 1,
    bytes_per_second: int = 32000,
) -> StreamSource:
    """Pick the source implementation for a stream locator."""
    parsed = urlparse(locator)
    scheme = parsed.scheme.lower()

    if scheme == "synthetic":
        return SyntheticStreamSource(bytes_per_second=bytes_per_second)

    if scheme in {"http", "https"} and parsed.path.lower().endswith((".pcm", ".raw")):
        return HttpStreamSource()

    logger.debug("Using ffmpeg source for locator scheme '{}'", scheme or "file")
    return FfmpegStreamSource(
        sample_rate=sample_rate, sample_width=sample_width, channels=channels
    )
