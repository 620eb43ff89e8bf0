from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from livecast.domain.captioning.models import CaptionEvent


class CaptionItem(BaseModel):
    """Archived caption in the live delivery wire format."""

    session_id: str = Field(serialization_alias="sessionId")
    sequence: int
    timestamp: datetime
    source_text: str = Field(serialization_alias="sourceText")
    translations: dict[str, str]
    word_timings: list[dict[str, Any]] | None = Field(default=None, serialization_alias="wordTimings")
    status: str

    @classmethod
    def from_event(cls, event: CaptionEvent) -> "CaptionItem":
        return cls(
            session_id=event.session_id,
            sequence=event.sequence,
            timestamp=event.timestamp,
            source_text=event.source_text,
            translations=dict(event.translations),
            word_timings=[t.model_dump() for t in event.word_timings] if event.word_timings else None,
            status=event.status.value,
        )


class QueryArchiveOut(BaseModel):
    org_id: str
    start: datetime
    end: datetime
    count: int
    captions: list[CaptionItem]
