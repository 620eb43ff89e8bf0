from __future__ import annotations

from collections.abc import AsyncIterator

from loguru import logger

from livecast.app_config import PipelineSettings
from livecast.domain.captioning.errors import SourceUnavailable
from livecast.domain.captioning.models import AudioChunk
from livecast.domain.captioning.sources import StreamSource


class AudioChunker:
    """
    Slices a continuous PCM byte stream into fixed-duration AudioChunks.

    Reads arrive in whatever sizes the source produces; bytes are buffered until
    a full chunk is available, so jitter in the upstream never affects sequence
    numbering. Sequence numbers and start offsets continue from `start_sequence`
    and `start_offset`, which lets the orchestrator resume after a reconnect.

    The chunk sequence is lazy and can be iterated only once. A clean end of
    the source ends it (emitting a trailing partial chunk when it is long
    enough); any read failure is raised as `SourceUnavailable`.
    """

    def __init__(
        self,
        session_id: str,
        source: StreamSource,
        locator: str,
        settings: PipelineSettings,
        *,
        start_sequence: int = 0,
        start_offset: float = 0.0,
    ) -> None:
        self._session_id = session_id
        self._source = source
        self._locator = locator
        self._bytes_per_second = settings.bytes_per_second
        self._frame_size = settings.sample_width * settings.channels
        self._chunk_bytes = self._align(int(self._bytes_per_second * settings.chunk_seconds))
        self._min_tail_bytes = self._align(
            int(self._bytes_per_second * settings.min_tail_chunk_seconds)
        )
        self._sequence = start_sequence
        self._offset = start_offset
        self._consumed = False

    def _align(self, size: int) -> int:
        return max(size - size % self._frame_size, self._frame_size)

    def _make_chunk(self, payload: bytes) -> AudioChunk:
        duration = len(payload) / self._bytes_per_second
        chunk = AudioChunk(
            session_id=self._session_id,
            sequence=self._sequence,
            payload=payload,
            duration=duration,
            start_offset=self._offset,
        )
        self._sequence += 1
        self._offset += duration
        return chunk

    def __aiter__(self) -> AsyncIterator[AudioChunk]:
        if self._consumed:
            raise RuntimeError("AudioChunker can only be iterated once")
        self._consumed = True
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[AudioChunk]:
        buffer = bytearray()
        try:
            async for data in self._source.read(self._locator):
                buffer.extend(data)
                while len(buffer) >= self._chunk_bytes:
                    payload = bytes(buffer[: self._chunk_bytes])
                    del buffer[: self._chunk_bytes]
                    yield self._make_chunk(payload)
        except SourceUnavailable:
            raise
        except Exception as exc:
            raise SourceUnavailable(self._locator, f"{type(exc).__name__}: {exc}") from exc

        tail = len(buffer) - len(buffer) % self._frame_size
        if tail and tail >= self._min_tail_bytes:
            yield self._make_chunk(bytes(buffer[:tail]))
        elif tail:
            logger.debug(
                "Dropping {} trailing bytes of session {} (shorter than the minimum tail chunk)",
                tail,
                self._session_id,
            )
