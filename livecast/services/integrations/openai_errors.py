"""Map OpenAI SDK errors onto the transient/permanent service failure taxonomy."""

import openai

from livecast.domain.captioning.errors import (
    PermanentServiceError,
    ServiceError,
    TransientServiceError,
)


def map_openai_error(exc: Exception) -> ServiceError:
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientServiceError(f"{type(exc).__name__}: {exc}")

    if isinstance(exc, openai.RateLimitError):
        # Quota exhaustion is reported as a 429 but never recovers on retry
        if getattr(exc, "code", None) == "insufficient_quota":
            return PermanentServiceError(f"quota exhausted: {exc}")
        return TransientServiceError(f"rate limited: {exc}")

    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500 or exc.status_code in (408, 409):
            return TransientServiceError(f"HTTP {exc.status_code}: {exc}")
        return PermanentServiceError(f"HTTP {exc.status_code}: {exc}")

    return PermanentServiceError(f"{type(exc).__name__}: {exc}")
