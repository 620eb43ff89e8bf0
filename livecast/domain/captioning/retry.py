from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from livecast.domain.captioning.errors import PermanentServiceError, TransientServiceError

T = TypeVar("T")


class RetryExhausted(Exception):
    """All attempts of a retried call failed with transient errors."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay before retry number `attempt` (1-based), capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    timeout: float | None,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    gate: asyncio.Semaphore | None = None,
    label: str = "external call",
) -> T:
    """
    Run `operation` with a per-attempt timeout, retrying transient failures with
    exponential backoff.

    `PermanentServiceError` is raised immediately. Timeouts and
    `TransientServiceError` are retried up to `max_retries` times, after which
    `RetryExhausted` is raised. Each attempt holds `gate`, the process-wide
    limit on concurrent external calls, if one is given.
    """
    attempts = max_retries + 1

    for attempt in range(1, attempts + 1):
        try:
            async with gate if gate is not None else contextlib.nullcontext():
                return await asyncio.wait_for(operation(), timeout=timeout)
        except PermanentServiceError:
            logger.warning("{} failed with a permanent error (attempt {})", label, attempt)
            raise
        except (TimeoutError, TransientServiceError) as exc:
            last_error: BaseException = exc
            if isinstance(exc, TimeoutError):
                last_error = TransientServiceError(f"timed out after {timeout}s")

            if attempt == attempts:
                logger.warning("{} failed after {} attempts: {}", label, attempts, last_error)
                raise RetryExhausted(label, attempts, last_error) from exc

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info(
                "{} failed ({}), retrying in {} seconds (attempt {} of {})",
                label,
                last_error,
                delay,
                attempt,
                attempts,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
