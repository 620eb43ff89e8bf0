"""
Session orchestrator: drives one captioning session from its stream to the
broadcast hub and the archive.

Pipeline per session:
    stream source -> AudioChunker -> [window of K chunk tasks:
        transcription -> translation fan-out] -> ReorderBuffer -> release
        (BroadcastHub.publish + ArchiveWriter.submit)

The ingest task reads the stream and dispatches chunks. A window slot is taken
before a chunk is dispatched and given back only when that chunk's caption is
released in order, so a stalled chunk applies backpressure to the reader. The
release task pops completed captions from the reorder buffer in sequence order
and replaces a chunk that misses its hold deadline with a failure marker.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from livecast.app_config import PipelineSettings
from livecast.domain.archive.export import ArchiveExporter
from livecast.domain.archive.store import CaptionStore
from livecast.domain.archive.writer import ArchiveWriter
from livecast.domain.broadcast.hub import BroadcastHub
from livecast.domain.captioning.chunker import AudioChunker
from livecast.domain.captioning.errors import SourceUnavailable
from livecast.domain.captioning.models import (
    AudioChunk,
    CaptionEvent,
    CaptionSession,
    ErrorKind,
    SessionSummary,
    TranscriptionFailure,
    utcnow,
)
from livecast.domain.captioning.reorder import ReorderBuffer
from livecast.domain.captioning.retry import backoff_delay
from livecast.domain.captioning.sources import StreamSource
from livecast.domain.captioning.state_machine import CaptionSessionStateMachine
from livecast.domain.captioning.transcription import TranscriptionClient
from livecast.domain.captioning.translation import TranslationFanout
from livecast.schemas.session_state import SessionState


class SessionOrchestrator:
    def __init__(
        self,
        session: CaptionSession,
        *,
        source: StreamSource,
        transcription: TranscriptionClient,
        fanout: TranslationFanout,
        hub: BroadcastHub,
        archive: ArchiveWriter,
        store: CaptionStore,
        settings: PipelineSettings,
        exporter: ArchiveExporter | None = None,
    ) -> None:
        self.session = session
        self._source = source
        self._transcription = transcription
        self._fanout = fanout
        self._hub = hub
        self._archive = archive
        self._store = store
        self._settings = settings
        self._exporter = exporter

        self._window = asyncio.Semaphore(settings.inflight_window)
        self._buffer = ReorderBuffer()
        self._wakeup = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._finished = asyncio.Event()
        self._chunk_tasks: dict[int, asyncio.Task[None]] = {}
        self._slot_bounds: dict[int, tuple[float, float]] = {}
        self._ingest_task: asyncio.Task[None] | None = None
        self._release_task: asyncio.Task[None] | None = None

        self._next_offset = 0.0
        self._ingest_done = False
        self._stop_requested = False
        self._aborted = False
        self._consecutive_failures = 0
        self._source_error: SourceUnavailable | None = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    def summary(self) -> SessionSummary:
        return self.session.summary()

    def _transition(self, new_state: SessionState) -> None:
        current = self.session.state
        CaptionSessionStateMachine.ensure_transition(current, new_state)
        self.session.state = new_state
        logger.info(f"Session {self.session_id}: {current} -> {new_state}")

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self) -> bool:
        """
        Ask the session to stop. The stream read and any chunk not yet
        dispatched are cancelled immediately; chunks in flight may finish
        within the stop grace period.

        Returns False when a stop was already requested or the session has
        already ended.
        """
        if self._stop_requested or CaptionSessionStateMachine.is_terminal(self.session.state):
            return False

        self._stop_requested = True
        self._stop_event.set()
        if self.session.state in (SessionState.STARTING, SessionState.LIVE):
            self._transition(SessionState.STOPPING)
        if self._ingest_task is not None and not self._ingest_task.done():
            self._ingest_task.cancel()
        logger.info(f"Stop requested for session {self.session_id}")
        return True

    async def wait_finished(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._finished.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> SessionSummary:
        """Run the session to a terminal state and return its final summary."""
        try:
            if self._stop_requested:
                self._transition(SessionState.STOPPED)
                return await self._finalize()

            self._transition(SessionState.STARTING)
            self._archive.start()
            self._release_task = asyncio.create_task(self._release_loop())
            self._ingest_task = asyncio.create_task(self._ingest())

            await asyncio.wait(
                {self._ingest_task, self._release_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if self._aborted:
                await self._abort()
                return await self._finalize()

            await self._drain()
            return await self._finalize()
        except asyncio.CancelledError:
            self._cancel_outstanding()
            raise

    async def _drain(self) -> None:
        assert self._release_task is not None

        if self._source_error is None and self.session.state in (
            SessionState.STARTING,
            SessionState.LIVE,
        ):
            logger.info(f"Stream of session {self.session_id} ended")
            self._transition(SessionState.STOPPING)

        if not self._stop_requested:
            # A natural drain runs until every slot is released or a stop arrives.
            stop_wait = asyncio.create_task(self._stop_event.wait())
            try:
                await asyncio.wait(
                    {self._release_task, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                stop_wait.cancel()

        if not self._release_task.done():
            grace = self._settings.stop_grace_seconds
            done, _ = await asyncio.wait({self._release_task}, timeout=grace)
            if not done:
                logger.warning(
                    f"Session {self.session_id}: stop grace period of {grace}s elapsed, "
                    f"discarding {len(self._buffer)} pending chunk(s)"
                )

        if self._aborted:
            await self._abort()
            return

        self._cancel_outstanding()
        if self._source_error is not None:
            self._transition(SessionState.ERRORED)
        elif self.session.state != SessionState.STOPPED:
            self._transition(SessionState.STOPPED)

    async def _abort(self) -> None:
        self._cancel_outstanding()
        if self._ingest_task is not None:
            await asyncio.wait({self._ingest_task})
        self._transition(SessionState.ERRORED)

    def _cancel_outstanding(self) -> None:
        for task in (self._ingest_task, self._release_task, *self._chunk_tasks.values()):
            if task is not None and not task.done():
                task.cancel()
        dropped = self._buffer.discard()
        if dropped:
            logger.info(f"Session {self.session_id}: discarded unreleased chunks {dropped}")

    async def _finalize(self) -> SessionSummary:
        session = self.session
        session.ended_at = utcnow()

        try:
            flushed = await self._archive.aclose(timeout=self._settings.archive_flush_timeout)
            if not flushed:
                logger.warning(f"Archive flush of session {self.session_id} did not complete")
        except Exception:
            logger.exception(f"Failed to close archive writer of session {self.session_id}")

        summary = session.summary()
        try:
            await self._store.save_summary(summary)
        except Exception:
            logger.exception(f"Failed to save summary of session {self.session_id}")

        if self._exporter is not None and session.total_captions:
            try:
                await self._exporter.export_session(summary)
            except Exception:
                logger.exception(f"Failed to export captions of session {self.session_id}")

        logger.info(
            f"Session {self.session_id} finalized: state={session.state} "
            f"captions={session.total_captions} failed={session.failed_chunks}"
        )
        self._finished.set()
        return summary

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def _ingest(self) -> None:
        settings = self._settings
        reconnects = 0
        try:
            while True:
                chunker = AudioChunker(
                    self.session_id,
                    self._source,
                    self.session.stream_locator,
                    settings,
                    start_sequence=self.session.next_sequence,
                    start_offset=self._next_offset,
                )
                try:
                    async for chunk in chunker:
                        reconnects = 0
                        await self._dispatch(chunk)
                    return
                except SourceUnavailable as exc:
                    self.session.errors.record(ErrorKind.SOURCE_UNAVAILABLE, str(exc))
                    if reconnects >= settings.reconnect_attempts:
                        logger.error(
                            f"Session {self.session_id}: giving up on the stream after "
                            f"{reconnects} reconnect attempt(s): {exc}"
                        )
                        self._source_error = exc
                        return

                    reconnects += 1
                    delay = backoff_delay(
                        reconnects, settings.reconnect_base_delay, settings.retry_max_delay
                    )
                    logger.warning(
                        f"Session {self.session_id}: {exc}; reconnecting in {delay}s "
                        f"(attempt {reconnects} of {settings.reconnect_attempts})"
                    )
                    await asyncio.sleep(delay)
        finally:
            self._ingest_done = True
            self._wakeup.set()

    async def _dispatch(self, chunk: AudioChunk) -> None:
        if self.session.state == SessionState.STARTING:
            self.session.started_at = utcnow()
            self._transition(SessionState.LIVE)

        await self._window.acquire()
        if self._stop_requested or self._aborted:
            self._window.release()
            return

        self.session.next_sequence = chunk.sequence + 1
        self._next_offset = chunk.start_offset + chunk.duration
        self._slot_bounds[chunk.sequence] = (chunk.start_offset, chunk.duration)
        self._buffer.reserve(chunk.sequence, self._now() + self._settings.max_slot_hold_seconds)
        # The release loop may be idle with no head deadline to wait on.
        self._wakeup.set()

        task = asyncio.create_task(self._process(chunk))
        self._chunk_tasks[chunk.sequence] = task
        task.add_done_callback(lambda _, seq=chunk.sequence: self._chunk_tasks.pop(seq, None))

    # ------------------------------------------------------------------
    # Per-chunk work
    # ------------------------------------------------------------------

    async def _process(self, chunk: AudioChunk) -> None:
        session = self.session
        try:
            outcome = await self._transcription.transcribe(chunk)
            if isinstance(outcome, TranscriptionFailure):
                session.errors.record(
                    ErrorKind.TRANSCRIPTION_FAILED, outcome.reason, sequence=chunk.sequence
                )
                event = self._failed_event(chunk.sequence, outcome.reason)
            else:
                fanout = await self._fanout.translate(
                    outcome.text,
                    session.target_languages,
                    label=f"{self.session_id}#{chunk.sequence}",
                )
                for language, reason in fanout.failures.items():
                    session.errors.record(
                        ErrorKind.TRANSLATION_FAILED,
                        reason,
                        sequence=chunk.sequence,
                        language=language,
                    )
                event = CaptionEvent(
                    session_id=self.session_id,
                    org_id=session.org_id,
                    sequence=chunk.sequence,
                    timestamp=utcnow(),
                    source_text=outcome.text,
                    translations=fanout.translations,
                    word_timings=outcome.word_timings or None,
                    start_offset=chunk.start_offset,
                    duration=chunk.duration,
                )
        except Exception as exc:
            logger.exception(f"Chunk {self.session_id}#{chunk.sequence} processing failed")
            reason = f"{type(exc).__name__}: {exc}"
            session.errors.record(ErrorKind.TRANSCRIPTION_FAILED, reason, sequence=chunk.sequence)
            event = self._failed_event(chunk.sequence, reason)

        if self._buffer.complete(event):
            self._wakeup.set()

    def _failed_event(self, sequence: int, reason: str) -> CaptionEvent:
        start_offset, duration = self._slot_bounds.get(sequence, (0.0, 0.0))
        return CaptionEvent.failed(
            session_id=self.session_id,
            org_id=self.session.org_id,
            sequence=sequence,
            reason=reason,
            start_offset=start_offset,
            duration=duration,
        )

    # ------------------------------------------------------------------
    # Ordered release
    # ------------------------------------------------------------------

    async def _release_loop(self) -> None:
        while True:
            self._wakeup.clear()
            for event in self._buffer.pop_ready():
                await self._release(event)
                if self._aborted:
                    return

            if self._ingest_done and self._buffer.empty:
                return

            head = self._buffer.head()
            timeout = None if head is None else max(0.0, head[1] - self._now())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except TimeoutError:
                assert head is not None
                self._expire_slot(head[0])

    def _expire_slot(self, sequence: int) -> None:
        if not self._buffer.is_pending(sequence):
            return
        task = self._chunk_tasks.pop(sequence, None)
        if task is not None:
            task.cancel()
        reason = f"no result within {self._settings.max_slot_hold_seconds}s"
        logger.warning(f"Chunk {self.session_id}#{sequence}: {reason}")
        self.session.errors.record(ErrorKind.TRANSCRIPTION_FAILED, reason, sequence=sequence)
        self._buffer.complete(self._failed_event(sequence, reason))

    async def _release(self, event: CaptionEvent) -> None:
        session = self.session
        self._slot_bounds.pop(event.sequence, None)
        session.total_captions += 1
        if event.is_failed:
            session.failed_chunks += 1
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0

        try:
            await self._hub.publish(event)
        except Exception:
            logger.exception(f"Broadcast of {self.session_id}#{event.sequence} failed")
        self._archive.submit(event)
        self._window.release()

        threshold = self._settings.consecutive_failure_threshold
        if self._consecutive_failures >= threshold:
            message = f"{self._consecutive_failures} consecutive chunk failures"
            logger.error(f"Session {self.session_id} aborted: {message}")
            session.errors.record(ErrorKind.SESSION_ABORTED, message, sequence=event.sequence)
            self._aborted = True
