"""Translation service (demo-safe).

- When DEMO_MODE=true (default), returns deterministic stub translations.
- When DEMO_MODE=false, one OpenAI chat completion per target language.
"""

import openai
from loguru import logger

from livecast.app_config import get_app_environ_config
from livecast.domain.captioning.errors import PermanentServiceError, TransientServiceError
from livecast.services.integrations.openai_errors import map_openai_error
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

SYSTEM_PROMPT = (
    "You are a professional live-caption translator. Translate the user's text into "
    "the requested target language (given as a language code). Reply with the "
    "translation only, without quotes, notes or transliterations."
)


class TranslatorService:
    """Text translation into a single target language per call.

    Example:
        ```python
        translator = TranslatorService()
        text = await translator.translate("Hello, world!", "es")
        ```
    """

    def __init__(self) -> None:
        """Initialize the translator service.

        Raises:
            AppError: If DEMO_MODE=false but required provider config is missing
        """
        settings = get_app_environ_config()
        self._demo_mode = settings.DEMO_MODE
        self._model = settings.OPENAI_TRANSLATE_MODEL
        self._client: openai.AsyncOpenAI | None = None

        if self._demo_mode:
            logger.info("TranslatorService initialized in DEMO_MODE (stubbed)")
            return

        if not settings.OPENAI_API_KEY:
            logger.error("OPENAI_API_KEY not configured (DEMO_MODE=false)")
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="OPENAI_API_KEY must be configured when DEMO_MODE=false.",
                status_code=HttpStatusCode.BAD_REQUEST,
            )

        self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)
        logger.info(f"TranslatorService initialized (model={self._model})")

    async def translate(self, text: str, target_language: str) -> str:
        """Translate text into `target_language`.

        Raises:
            TransientServiceError: timeouts, connection errors, 5xx, rate limits, empty output
            PermanentServiceError: invalid request, authentication, quota exhausted, refusal
        """
        logger.debug(f"Translating text: text_length={len(text)}, target_language={target_language}")

        # Demo-safe stub: deterministic output, no external calls.
        if self._demo_mode:
            return f"[{target_language}] {text}"

        if self._client is None:
            raise AppError(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg="Translator client is not initialized",
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            )

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Target language: {target_language}\n\n{text}"},
                ],
                temperature=0.2,
                max_tokens=1000,
            )
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc

        message = response.choices[0].message

        # Check for refusal first (model declined to respond)
        if getattr(message, "refusal", None):
            logger.error(f"Translation refused by model: refusal={message.refusal}")
            raise PermanentServiceError(f"Translation refused: {message.refusal}")

        if not message.content or not message.content.strip():
            raise TransientServiceError(f"Translation to {target_language} returned no content")

        return message.content.strip()
