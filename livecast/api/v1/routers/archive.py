"""Caption archive endpoints for replay."""

from datetime import datetime

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from livecast.api.v1.dependency import Registry
from livecast.api.v1.schemas.archive import CaptionItem, QueryArchiveOut
from livecast.api.v1.schemas.base import ApiOut

router = APIRouter(prefix="/archive", tags=["Archive"])


@router.get("/captions", response_model=ApiOut[QueryArchiveOut])
async def query_archive(
    registry: Registry,
    org_id: str = Query(..., min_length=1),
    start: datetime = Query(..., description="Start of the time range (ISO 8601)"),
    end: datetime = Query(..., description="End of the time range (ISO 8601)"),
    session_id: str | None = Query(default=None, description="Restrict to one session"),
) -> ApiOut[QueryArchiveOut]:
    """Archived captions of an organization within a time range."""
    events = await registry.query_archive(org_id, start, end, session_id=session_id)
    return ApiOut[QueryArchiveOut](
        results=QueryArchiveOut(
            org_id=org_id,
            start=start,
            end=end,
            count=len(events),
            captions=[CaptionItem.from_event(e) for e in events],
        )
    )


@router.get("/{session_id}/captions.vtt", response_class=PlainTextResponse)
async def get_session_webvtt(
    session_id: str,
    registry: Registry,
    language: str | None = Query(default=None, description="Language code for translated captions"),
) -> PlainTextResponse:
    """WebVTT caption file of a session, in the source language or a translation."""
    vtt_content = await registry.session_webvtt(session_id, language)
    return PlainTextResponse(
        content=vtt_content,
        media_type="text/vtt",
        headers={
            "Content-Disposition": f'inline; filename="{session_id}.vtt"',
            "Cache-Control": "no-cache",
        },
    )
