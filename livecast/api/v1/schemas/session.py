from datetime import datetime

from pydantic import BaseModel, Field

from livecast.domain.captioning.models import ErrorEntry, SessionSummary
from livecast.schemas.session_state import SessionState


class StartSessionIn(BaseModel):
    """Request to start captioning a live stream."""

    org_id: str = Field(min_length=1, description="Organization that owns the session")
    stream_locator: str = Field(
        min_length=1,
        description="Stream URL (RTMP/HLS/HTTP(S)) or synthetic:// locator",
    )
    target_languages: list[str] = Field(
        default_factory=list,
        description="Language codes to translate captions into (e.g. ['es', 'fr'])",
    )


class StartSessionOut(BaseModel):
    session_id: str
    state: SessionState


class StopSessionIn(BaseModel):
    session_id: str = Field(min_length=1)
    wait: bool = Field(
        default=True,
        description="Wait until in-flight chunks have drained and the session is finalized",
    )


class SessionStatusOut(BaseModel):
    """Current state and statistics of a session."""

    session_id: str
    org_id: str
    state: SessionState
    stream_locator: str
    target_languages: list[str]
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: float | None = None
    chunks_received: int
    total_captions: int
    failed_chunks: int
    error_counts: dict[str, int]
    recent_errors: list[ErrorEntry]

    @classmethod
    def from_summary(cls, summary: SessionSummary) -> "SessionStatusOut":
        return cls(
            **summary.model_dump(exclude={"recent_errors"}),
            recent_errors=summary.recent_errors,
            duration_seconds=summary.duration_seconds,
        )
