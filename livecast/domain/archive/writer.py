from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from livecast.domain.archive.store import CaptionStore
from livecast.domain.captioning.errors import ArchiveWriteFailed
from livecast.domain.captioning.models import CaptionEvent
from livecast.domain.captioning.retry import backoff_delay


class ArchiveWriter:
    """
    Appends a session's caption events to the store in arrival order.

    `submit` only enqueues, so the release path never waits on storage. One
    worker task drains the queue; each append is retried with backoff, and an
    event that still cannot be stored is reported through `on_failure` and
    skipped. Appends are idempotent on (session_id, sequence).
    """

    def __init__(
        self,
        store: CaptionStore,
        *,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        on_failure: Callable[[ArchiveWriteFailed], None] | None = None,
    ) -> None:
        self._store = store
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._on_failure = on_failure
        self._queue: asyncio.Queue[CaptionEvent] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.stored = 0
        self.duplicates = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    def submit(self, event: CaptionEvent) -> None:
        self._queue.put_nowait(event)
        self.start()

    async def append(self, event: CaptionEvent) -> bool:
        """Store one event with retries. Returns True when the event is in the store."""
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                if await self._store.append_caption(event):
                    self.stored += 1
                else:
                    self.duplicates += 1
                return True
            except Exception as exc:
                if attempt == attempts:
                    self.failed += 1
                    failure = ArchiveWriteFailed(event.session_id, event.sequence, str(exc))
                    logger.error(str(failure))
                    if self._on_failure is not None:
                        self._on_failure(failure)
                    return False
                delay = backoff_delay(attempt, self._base_delay, self._max_delay)
                logger.warning(
                    f"Archive append of {event.session_id}#{event.sequence} failed ({exc}), "
                    f"retrying in {delay}s (attempt {attempt} of {attempts})"
                )
                await asyncio.sleep(delay)
        return False

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.append(event)
            finally:
                self._queue.task_done()

    async def flush(self, timeout: float | None = None) -> bool:
        """Wait until every submitted event has been handled."""
        if not self._queue.empty():
            self.start()
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Archive flush timed out with {self.pending} event(s) pending")
            return False
        return True

    async def aclose(self, timeout: float | None = None) -> bool:
        flushed = await self.flush(timeout)
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.wait({self._worker})
            self._worker = None
        return flushed
