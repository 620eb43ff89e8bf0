"""Data types flowing through the captioning pipeline.

Classes:
    - AudioChunk: fixed-duration slice of the source audio (never persisted)
    - TranscriptionResult / TranscriptionFailure: outcome of one transcription call
    - FanoutResult: per-language outcome of translating one chunk
    - CaptionEvent: immutable, ordered output unit for one chunk
    - SessionErrorLog: bounded history of the most recent errors of a session
    - CaptionSession: mutable runtime record owned by the orchestrator
    - SessionSummary: read-only view of a session for status queries and persistence
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from livecast.schemas.session_state import SessionState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WordTiming(BaseModel):
    """Word-level timing, offsets in seconds relative to the session start."""

    model_config = ConfigDict(frozen=True)

    word: str
    start: float
    end: float


@dataclass(frozen=True)
class AudioChunk:
    session_id: str
    sequence: int
    payload: bytes = field(repr=False)
    duration: float
    start_offset: float


@dataclass
class TranscriptionResult:
    text: str
    word_timings: list[WordTiming] = field(default_factory=list)
    language: str | None = None


@dataclass
class TranscriptionFailure:
    """Typed failure that keeps the chunk's slot so a gap marker can be emitted."""

    sequence: int
    reason: str
    transient: bool
    attempts: int


@dataclass
class FanoutResult:
    translations: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)


class CaptionStatus(str, Enum):
    OK = "ok"
    TRANSCRIPTION_FAILED = "transcription_failed"

    def __str__(self) -> str:
        return self.value


class CaptionEvent(BaseModel):
    """Caption for one chunk. The sequence number is the ordering key."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    org_id: str
    sequence: int
    timestamp: datetime
    source_text: str
    translations: dict[str, str] = Field(default_factory=dict)
    word_timings: list[WordTiming] | None = None
    status: CaptionStatus = CaptionStatus.OK
    start_offset: float = 0.0
    duration: float = 0.0
    failure_reason: str | None = None

    @classmethod
    def failed(
        cls,
        *,
        session_id: str,
        org_id: str,
        sequence: int,
        reason: str,
        start_offset: float = 0.0,
        duration: float = 0.0,
    ) -> CaptionEvent:
        """Gap marker for a chunk whose transcription never succeeded."""
        return cls(
            session_id=session_id,
            org_id=org_id,
            sequence=sequence,
            timestamp=utcnow(),
            source_text="",
            status=CaptionStatus.TRANSCRIPTION_FAILED,
            start_offset=start_offset,
            duration=duration,
            failure_reason=reason,
        )

    @property
    def is_failed(self) -> bool:
        return self.status == CaptionStatus.TRANSCRIPTION_FAILED

    def to_payload(self) -> dict[str, Any]:
        """Wire format of the live delivery channel."""
        payload: dict[str, Any] = {
            "sessionId": self.session_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "sourceText": self.source_text,
            "translations": dict(self.translations),
            "status": self.status.value,
        }
        if self.word_timings:
            payload["wordTimings"] = [timing.model_dump() for timing in self.word_timings]
        return payload


class ErrorKind(str, Enum):
    SOURCE_UNAVAILABLE = "SourceUnavailable"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    TRANSLATION_FAILED = "TranslationFailed"
    ARCHIVE_WRITE_FAILED = "ArchiveWriteFailed"
    SESSION_ABORTED = "SessionAborted"

    def __str__(self) -> str:
        return self.value


class ErrorEntry(BaseModel):
    kind: ErrorKind
    message: str
    sequence: int | None = None
    language: str | None = None
    occurred_at: datetime = Field(default_factory=utcnow)


class SessionErrorLog:
    """Keeps the most recent `limit` errors; per-kind counts cover the whole session."""

    def __init__(self, limit: int = 50) -> None:
        self._entries: deque[ErrorEntry] = deque(maxlen=limit)
        self._counts: Counter[ErrorKind] = Counter()

    def record(
        self,
        kind: ErrorKind,
        message: str,
        *,
        sequence: int | None = None,
        language: str | None = None,
    ) -> ErrorEntry:
        entry = ErrorEntry(kind=kind, message=message, sequence=sequence, language=language)
        self._entries.append(entry)
        self._counts[kind] += 1
        return entry

    def entries(self, kind: ErrorKind | None = None) -> list[ErrorEntry]:
        if kind is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.kind == kind]

    def count(self, kind: ErrorKind) -> int:
        return self._counts[kind]

    def counts(self) -> dict[str, int]:
        return {kind.value: n for kind, n in self._counts.items()}

    def __len__(self) -> int:
        return len(self._entries)


class SessionSummary(BaseModel):
    session_id: str
    org_id: str
    state: SessionState
    stream_locator: str
    target_languages: list[str]
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    chunks_received: int = 0
    total_captions: int = 0
    failed_chunks: int = 0
    error_counts: dict[str, int] = Field(default_factory=dict)
    recent_errors: list[ErrorEntry] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.ended_at or utcnow()
        return (end - self.started_at).total_seconds()


@dataclass
class CaptionSession:
    """Runtime record of one captioning run, mutated only by its orchestrator."""

    session_id: str
    org_id: str
    stream_locator: str
    target_languages: tuple[str, ...]
    errors: SessionErrorLog
    state: SessionState = SessionState.CREATED
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    next_sequence: int = 0
    total_captions: int = 0
    failed_chunks: int = 0

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            org_id=self.org_id,
            state=self.state,
            stream_locator=self.stream_locator,
            target_languages=list(self.target_languages),
            created_at=self.created_at,
            started_at=self.started_at,
            ended_at=self.ended_at,
            chunks_received=self.next_sequence,
            total_captions=self.total_captions,
            failed_chunks=self.failed_chunks,
            error_counts=self.errors.counts(),
            recent_errors=self.errors.entries(),
        )
