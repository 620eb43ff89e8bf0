"""Caption ODM schema: one archived record per caption event."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field, field_validator
from pymongo import ASCENDING, DESCENDING, IndexModel

from livecast.domain.captioning.models import CaptionEvent, CaptionStatus, WordTiming, utcnow

from .schema_utils import parse_mongo_datetime


class CaptionRecord(Document):
    """Archived caption event, keyed by (session_id, sequence).

    The unique compound index makes appends idempotent: re-inserting the same
    event fails with a duplicate key error instead of storing a second copy.
    """

    session_id: str
    org_id: str
    sequence: int

    timestamp: datetime
    source_text: str
    translations: dict[str, str] = Field(default_factory=dict)
    word_timings: list[WordTiming] | None = None
    status: CaptionStatus = CaptionStatus.OK
    failure_reason: str | None = None

    # Offsets in seconds relative to the session start, used for WebVTT export
    start_offset: float = 0.0
    duration: float = 0.0

    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp", "created_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    @classmethod
    def from_event(cls, event: CaptionEvent) -> CaptionRecord:
        return cls(
            session_id=event.session_id,
            org_id=event.org_id,
            sequence=event.sequence,
            timestamp=event.timestamp,
            source_text=event.source_text,
            translations=dict(event.translations),
            word_timings=event.word_timings,
            status=event.status,
            failure_reason=event.failure_reason,
            start_offset=event.start_offset,
            duration=event.duration,
        )

    def to_event(self) -> CaptionEvent:
        return CaptionEvent(
            session_id=self.session_id,
            org_id=self.org_id,
            sequence=self.sequence,
            timestamp=self.timestamp,
            source_text=self.source_text,
            translations=self.translations,
            word_timings=self.word_timings,
            status=self.status,
            failure_reason=self.failure_reason,
            start_offset=self.start_offset,
            duration=self.duration,
        )

    class Settings:
        name = "caption"
        indexes = [
            IndexModel(
                [("session_id", ASCENDING), ("sequence", ASCENDING)],
                name="uniq_session_sequence",
                unique=True,
            ),
            IndexModel(
                [("org_id", ASCENDING), ("timestamp", ASCENDING)],
                name="idx_org_timestamp",
            ),
            IndexModel(
                [("created_at", DESCENDING)],
                name="idx_created_desc",
            ),
        ]
