from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger

from livecast.app_config import PipelineSettings
from livecast.domain.captioning.errors import PermanentServiceError
from livecast.domain.captioning.models import (
    AudioChunk,
    TranscriptionFailure,
    TranscriptionResult,
    WordTiming,
)
from livecast.domain.captioning.retry import RetryExhausted, call_with_retry


class Transcriber(Protocol):
    async def transcribe(
        self,
        audio: bytes,
        *,
        sample_rate: int,
        sample_width: int,
        channels: int,
        language: str | None = None,
    ) -> TranscriptionResult: ...


class TranscriptionClient:
    """
    One transcription call per chunk, with a timeout proportional to the chunk
    duration and bounded retries for transient failures.

    Never raises for service failures: the outcome is either a
    `TranscriptionResult` (word timings shifted to session time) or a
    `TranscriptionFailure` carrying the chunk's sequence number.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        settings: PipelineSettings,
        *,
        gate: asyncio.Semaphore | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._settings = settings
        self._gate = gate

    def timeout_for(self, chunk: AudioChunk) -> float:
        return max(chunk.duration, 1.0) * self._settings.transcribe_timeout_factor

    async def transcribe(self, chunk: AudioChunk) -> TranscriptionResult | TranscriptionFailure:
        settings = self._settings

        async def _call() -> TranscriptionResult:
            return await self._transcriber.transcribe(
                chunk.payload,
                sample_rate=settings.sample_rate,
                sample_width=settings.sample_width,
                channels=settings.channels,
                language=settings.source_language,
            )

        try:
            result = await call_with_retry(
                _call,
                max_retries=settings.service_max_retries,
                timeout=self.timeout_for(chunk),
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                gate=self._gate,
                label=f"transcription of {chunk.session_id}#{chunk.sequence}",
            )
        except PermanentServiceError as exc:
            return TranscriptionFailure(
                sequence=chunk.sequence, reason=str(exc), transient=False, attempts=1
            )
        except RetryExhausted as exc:
            return TranscriptionFailure(
                sequence=chunk.sequence,
                reason=str(exc.last_error),
                transient=True,
                attempts=exc.attempts,
            )
        except Exception as exc:
            logger.exception(f"Unexpected transcription error for {chunk.session_id}#{chunk.sequence}")
            return TranscriptionFailure(
                sequence=chunk.sequence,
                reason=f"{type(exc).__name__}: {exc}",
                transient=False,
                attempts=1,
            )

        if result.word_timings and chunk.start_offset:
            result.word_timings = [
                WordTiming(
                    word=timing.word,
                    start=timing.start + chunk.start_offset,
                    end=timing.end + chunk.start_offset,
                )
                for timing in result.word_timings
            ]
        return result
