"""Session summary ODM schema."""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field, field_validator
from pymongo import DESCENDING, IndexModel

from livecast.domain.captioning.models import ErrorEntry, SessionSummary, utcnow

from .schema_utils import parse_mongo_datetime
from .session_state import SessionState


class SessionRecord(Document):
    """Final summary of a captioning session: status, counts, error log, time bounds."""

    session_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    org_id: Indexed(str)  # type: ignore[valid-type]
    state: SessionState
    stream_locator: str
    target_languages: list[str] = Field(default_factory=list)

    chunks_received: int = 0
    total_captions: int = 0
    failed_chunks: int = 0
    error_counts: dict[str, int] = Field(default_factory=dict)
    recent_errors: list[ErrorEntry] = Field(default_factory=list)

    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "started_at", "ended_at", "updated_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    def to_summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            org_id=self.org_id,
            state=self.state,
            stream_locator=self.stream_locator,
            target_languages=self.target_languages,
            created_at=self.created_at,
            started_at=self.started_at,
            ended_at=self.ended_at,
            chunks_received=self.chunks_received,
            total_captions=self.total_captions,
            failed_chunks=self.failed_chunks,
            error_counts=self.error_counts,
            recent_errors=self.recent_errors,
        )

    class Settings:
        name = "caption_session"
        indexes = [
            IndexModel([("org_id", 1), ("created_at", DESCENDING)], name="idx_org_created"),
        ]
