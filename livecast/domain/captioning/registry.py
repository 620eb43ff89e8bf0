"""Process-wide registry of running captioning sessions.

Owns the mapping from session id to its orchestrator. A session is added on
`start_session`, runs as one task, and is removed once finalized; after that,
status queries are answered from the persisted session summary.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from functools import partial
from uuid import uuid4

from loguru import logger
from livekit import rtc
from redis.asyncio import Redis

from livecast.app_config import PipelineSettings, get_pipeline_settings
from livecast.domain.archive.export import ArchiveExporter
from livecast.domain.archive.query import generate_webvtt
from livecast.domain.archive.store import CaptionStore
from livecast.domain.archive.writer import ArchiveWriter
from livecast.domain.broadcast.hub import BroadcastHub, Subscriber, session_channel
from livecast.domain.broadcast.subscribers import RedisChannelSubscriber, RoomDataSubscriber
from livecast.domain.captioning.errors import ArchiveWriteFailed
from livecast.domain.captioning.models import (
    CaptionEvent,
    CaptionSession,
    ErrorKind,
    SessionErrorLog,
    SessionSummary,
)
from livecast.domain.captioning.orchestrator import SessionOrchestrator
from livecast.domain.captioning.sources import StreamSource, build_stream_source
from livecast.domain.captioning.transcription import Transcriber, TranscriptionClient
from livecast.domain.captioning.translation import TranslationFanout, Translator
from livecast.schemas.session_state import SessionState
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2,3}(-[a-z0-9]{2,8})*$")
MAX_TARGET_LANGUAGES = 20


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def normalize_target_languages(target_languages: Sequence[str]) -> list[str]:
    """Lowercase, validate and deduplicate language codes, keeping their order."""
    languages: list[str] = []
    for raw in target_languages:
        code = str(raw).strip().lower().replace("_", "-")
        if not LANGUAGE_CODE_RE.match(code):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg=f"Invalid language code: {raw!r}",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        if code not in languages:
            languages.append(code)

    if len(languages) > MAX_TARGET_LANGUAGES:
        raise AppError(
            errcode=AppErrorCode.E_INVALID_REQUEST,
            errmesg=f"At most {MAX_TARGET_LANGUAGES} target languages are supported",
            status_code=HttpStatusCode.BAD_REQUEST,
        )
    return languages


class SessionRegistry:
    def __init__(
        self,
        *,
        store: CaptionStore,
        hub: BroadcastHub,
        transcriber: Transcriber,
        translator: Translator,
        settings: PipelineSettings | None = None,
        source_factory: Callable[[str], StreamSource] | None = None,
        exporter: ArchiveExporter | None = None,
        redis_relay: Redis | None = None,
    ) -> None:
        self._settings = settings or get_pipeline_settings()
        self._store = store
        self._hub = hub
        self._transcriber = transcriber
        self._translator = translator
        self._exporter = exporter
        self._redis_relay = redis_relay
        self._source_factory = source_factory or partial(
            build_stream_source,
            sample_rate=self._settings.sample_rate,
            sample_width=self._settings.sample_width,
            channels=self._settings.channels,
            bytes_per_second=self._settings.bytes_per_second,
        )
        # Shared by every session: caps concurrent transcription/translation calls.
        self._external_calls = asyncio.Semaphore(self._settings.global_max_external_calls)
        self._orchestrators: dict[str, SessionOrchestrator] = {}
        self._tasks: dict[str, asyncio.Task[SessionSummary]] = {}
        # Hub subscribers owned by a session, removed when it ends.
        self._attached: dict[str, list[str]] = {}

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    def __len__(self) -> int:
        return len(self._orchestrators)

    def get_orchestrator(self, session_id: str) -> SessionOrchestrator | None:
        return self._orchestrators.get(session_id)

    def list_active(self, org_id: str | None = None) -> list[SessionSummary]:
        return [
            orchestrator.summary()
            for orchestrator in self._orchestrators.values()
            if org_id is None or orchestrator.session.org_id == org_id
        ]

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start_session(
        self,
        org_id: str,
        stream_locator: str,
        target_languages: Sequence[str],
    ) -> str:
        org_id = (org_id or "").strip()
        stream_locator = (stream_locator or "").strip()
        if not org_id:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="org_id is required",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        if not stream_locator:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="stream_locator is required",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        languages = normalize_target_languages(target_languages)

        settings = self._settings
        session_id = f"cap_{uuid4().hex[:16]}"
        session = CaptionSession(
            session_id=session_id,
            org_id=org_id,
            stream_locator=stream_locator,
            target_languages=tuple(languages),
            errors=SessionErrorLog(limit=settings.error_log_limit),
        )

        def record_archive_failure(failure: ArchiveWriteFailed) -> None:
            session.errors.record(
                ErrorKind.ARCHIVE_WRITE_FAILED, failure.reason, sequence=failure.sequence
            )

        orchestrator = SessionOrchestrator(
            session,
            source=self._source_factory(stream_locator),
            transcription=TranscriptionClient(
                self._transcriber, settings, gate=self._external_calls
            ),
            fanout=TranslationFanout(self._translator, settings, gate=self._external_calls),
            hub=self._hub,
            archive=ArchiveWriter(
                self._store,
                max_retries=settings.archive_max_retries,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                on_failure=record_archive_failure,
            ),
            store=self._store,
            settings=settings,
            exporter=self._exporter,
        )

        self._orchestrators[session_id] = orchestrator
        if self._redis_relay is not None:
            relay = RedisChannelSubscriber(self._redis_relay, session_id)
            await self._attach(session_id, relay)

        self._tasks[session_id] = asyncio.create_task(
            self._run(orchestrator), name=f"caption-session-{session_id}"
        )
        logger.info(
            f"Started session {session_id}: org={org_id} locator={stream_locator} "
            f"languages={languages}"
        )
        return session_id

    async def _attach(self, session_id: str, subscriber: Subscriber) -> None:
        await self._hub.subscribe(session_channel(session_id), subscriber)
        self._attached.setdefault(session_id, []).append(subscriber.subscriber_id)

    async def _run(self, orchestrator: SessionOrchestrator) -> SessionSummary:
        session_id = orchestrator.session_id
        try:
            return await orchestrator.run()
        except Exception:
            logger.exception(f"Session {session_id} crashed")
            return orchestrator.summary()
        finally:
            self._orchestrators.pop(session_id, None)
            self._tasks.pop(session_id, None)
            for subscriber_id in self._attached.pop(session_id, []):
                await self._hub.unsubscribe(session_channel(session_id), subscriber_id)

    async def stop_session(self, session_id: str, *, wait: bool = True) -> SessionSummary:
        """
        Stop a running session. With `wait`, returns once the session has
        drained and been finalized; otherwise returns the current (stopping)
        status right away.

        Raises:
            AppError: E_SESSION_NOT_FOUND, or E_SESSION_ABORTED when the session
                already ended because of too many consecutive failures
        """
        orchestrator = self._orchestrators.get(session_id)
        if orchestrator is None:
            summary = await self._get_persisted_summary(session_id)
            if summary.state == SessionState.ERRORED and summary.error_counts.get(
                ErrorKind.SESSION_ABORTED.value
            ):
                raise AppError(
                    errcode=AppErrorCode.E_SESSION_ABORTED,
                    errmesg=f"Session {session_id} was aborted after repeated chunk failures",
                    status_code=HttpStatusCode.CONFLICT,
                )
            return summary

        orchestrator.request_stop()
        task = self._tasks.get(session_id)
        if not wait or task is None:
            return orchestrator.summary()

        await asyncio.wait({task})
        if task.cancelled():
            return orchestrator.summary()
        return task.result()

    async def attach_room(
        self, session_id: str, room: rtc.Room, language: str | None = None
    ) -> str:
        """Publish the captions of a running session into a LiveKit room's data channel."""
        if session_id not in self._orchestrators:
            raise AppError(
                errcode=AppErrorCode.E_SESSION_NOT_FOUND,
                errmesg=f"Session is not live: {session_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        subscriber = RoomDataSubscriber(room, language)
        await self._attach(session_id, subscriber)
        logger.info(f"Attached room subscriber {subscriber.subscriber_id} to session {session_id}")
        return subscriber.subscriber_id

    async def get_session_status(self, session_id: str) -> SessionSummary:
        orchestrator = self._orchestrators.get(session_id)
        if orchestrator is not None:
            return orchestrator.summary()
        return await self._get_persisted_summary(session_id)

    async def _get_persisted_summary(self, session_id: str) -> SessionSummary:
        try:
            summary = await self._store.get_summary(session_id)
        except Exception as exc:
            logger.exception(f"Failed to load summary of session {session_id}")
            raise AppError(
                errcode=AppErrorCode.E_ARCHIVE_UNAVAILABLE,
                errmesg="Session archive is unavailable",
                status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
            ) from exc
        if summary is None:
            raise AppError(
                errcode=AppErrorCode.E_SESSION_NOT_FOUND,
                errmesg=f"Session not found: {session_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return summary

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    async def query_archive(
        self,
        org_id: str,
        start: datetime,
        end: datetime,
        session_id: str | None = None,
    ) -> list[CaptionEvent]:
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="start must not be after end",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        try:
            return await self._store.query_captions(org_id, start, end, session_id=session_id)
        except Exception as exc:
            logger.exception(f"Archive query failed for org {org_id}")
            raise AppError(
                errcode=AppErrorCode.E_ARCHIVE_UNAVAILABLE,
                errmesg="Caption archive is unavailable",
                status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
            ) from exc

    async def session_webvtt(self, session_id: str, language: str | None = None) -> str:
        try:
            events = await self._store.list_session_captions(session_id)
        except Exception as exc:
            logger.exception(f"Failed to load captions of session {session_id}")
            raise AppError(
                errcode=AppErrorCode.E_ARCHIVE_UNAVAILABLE,
                errmesg="Caption archive is unavailable",
                status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
            ) from exc
        if not events and session_id not in self._orchestrators:
            await self._get_persisted_summary(session_id)
        return generate_webvtt(events, language)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop every running session, cancelling those still running after `timeout`."""
        if not self._tasks:
            return
        logger.info(f"Stopping {len(self._tasks)} running session(s)")
        for orchestrator in list(self._orchestrators.values()):
            orchestrator.request_stop()

        tasks = set(self._tasks.values())
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} session(s) that did not stop in time")
            await asyncio.wait(pending)
