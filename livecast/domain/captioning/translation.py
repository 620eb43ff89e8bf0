from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol

from loguru import logger

from livecast.app_config import PipelineSettings
from livecast.domain.captioning.models import FanoutResult
from livecast.domain.captioning.retry import RetryExhausted, call_with_retry


class Translator(Protocol):
    async def translate(self, text: str, target_language: str) -> str: ...


class TranslationFanout:
    """
    Translates one chunk's text into every target language concurrently.

    Each language is retried independently. The whole fan-out is bounded by an
    aggregate deadline; languages still pending at the deadline are cancelled
    and reported as failed. The result only ever contains requested languages.
    """

    def __init__(
        self,
        translator: Translator,
        settings: PipelineSettings,
        *,
        gate: asyncio.Semaphore | None = None,
    ) -> None:
        self._translator = translator
        self._settings = settings
        self._gate = gate

    async def _translate_one(self, text: str, language: str, label: str) -> str:
        settings = self._settings
        return await call_with_retry(
            lambda: self._translator.translate(text, language),
            max_retries=settings.service_max_retries,
            timeout=settings.translation_timeout,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            gate=self._gate,
            label=f"{label} translation to {language}",
        )

    async def translate(
        self,
        text: str,
        target_languages: Sequence[str],
        *,
        label: str = "chunk",
    ) -> FanoutResult:
        result = FanoutResult()
        if not target_languages:
            return result
        if not text.strip():
            # Nothing to translate; every language maps to empty text.
            result.translations = {language: "" for language in target_languages}
            return result

        tasks = {
            asyncio.create_task(self._translate_one(text, language, label)): language
            for language in target_languages
        }
        try:
            done, pending = await asyncio.wait(tasks, timeout=self._settings.translation_deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            task.cancel()
            result.failures[tasks[task]] = (
                f"translation deadline of {self._settings.translation_deadline}s exceeded"
            )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            language = tasks[task]
            exc = task.exception()
            if exc is None:
                result.translations[language] = task.result()
            elif isinstance(exc, RetryExhausted):
                result.failures[language] = str(exc.last_error)
            else:
                logger.warning(f"{label} translation to {language} failed: {exc!r}")
                result.failures[language] = f"{type(exc).__name__}: {exc}"

        # Keep the caller's language order.
        result.translations = {
            language: result.translations[language]
            for language in target_languages
            if language in result.translations
        }
        return result
