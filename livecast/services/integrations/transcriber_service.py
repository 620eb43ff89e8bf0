"""Transcription service (demo-safe).

- When DEMO_MODE=true (default), returns deterministic stub transcripts with
  evenly spaced word timings and performs no network calls.
- When DEMO_MODE=false, sends each chunk to the OpenAI audio transcription API
  as a WAV file and requests word-level timestamps.
"""

from __future__ import annotations

import io
import wave

import openai
from loguru import logger

from livecast.app_config import get_app_environ_config
from livecast.domain.captioning.models import TranscriptionResult, WordTiming
from livecast.services.integrations.openai_errors import map_openai_error
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

DEMO_PHRASES = [
    "welcome everyone to today's live session",
    "let's take a look at the agenda",
    "thank you all for joining us",
    "we will now move on to questions",
]


def pcm_to_wav(audio: bytes, *, sample_rate: int, sample_width: int, channels: int) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(audio)
    return buffer.getvalue()


def spread_word_timings(text: str, duration: float) -> list[WordTiming]:
    words = text.split()
    if not words or duration <= 0:
        return []
    step = duration / len(words)
    return [
        WordTiming(word=word, start=round(i * step, 3), end=round((i + 1) * step, 3))
        for i, word in enumerate(words)
    ]


class TranscriberService:
    """Speech-to-text for one audio chunk.

    Word timings in the result are relative to the start of the chunk.
    """

    def __init__(self) -> None:
        settings = get_app_environ_config()
        self._demo_mode = settings.DEMO_MODE
        self._model = settings.OPENAI_TRANSCRIBE_MODEL
        self._client: openai.AsyncOpenAI | None = None
        self._demo_counter = 0

        if self._demo_mode:
            logger.info("TranscriberService initialized in DEMO_MODE (stubbed)")
            return

        if not settings.OPENAI_API_KEY:
            logger.error("OPENAI_API_KEY not configured (DEMO_MODE=false)")
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="OPENAI_API_KEY must be configured when DEMO_MODE=false.",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        # Retries are driven by the pipeline, not the SDK.
        self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)
        logger.info(f"TranscriberService initialized (model={self._model})")

    async def transcribe(
        self,
        audio: bytes,
        *,
        sample_rate: int,
        sample_width: int,
        channels: int,
        language: str | None = None,
    ) -> TranscriptionResult:
        duration = len(audio) / float(sample_rate * sample_width * channels)

        if self._demo_mode:
            phrase = DEMO_PHRASES[self._demo_counter % len(DEMO_PHRASES)]
            self._demo_counter += 1
            return TranscriptionResult(
                text=phrase,
                word_timings=spread_word_timings(phrase, duration),
                language=language,
            )

        if self._client is None:
            raise AppError(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg="Transcriber client is not initialized",
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            )

        wav_bytes = pcm_to_wav(
            audio, sample_rate=sample_rate, sample_width=sample_width, channels=channels
        )
        kwargs = {}
        if language:
            kwargs["language"] = language

        try:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=("chunk.wav", wav_bytes, "audio/wav"),
                response_format="verbose_json",
                timestamp_granularities=["word"],
                **kwargs,
            )
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc

        text = (getattr(response, "text", None) or "").strip()
        words = getattr(response, "words", None) or []
        word_timings = [
            WordTiming(word=w.word, start=float(w.start), end=float(w.end)) for w in words
        ]
        logger.debug(f"Transcribed {duration:.1f}s of audio: text_length={len(text)}")
        return TranscriptionResult(
            text=text,
            word_timings=word_timings,
            language=getattr(response, "language", None) or language,
        )
