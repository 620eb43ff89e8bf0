"""Session control endpoints: start, stop and status of captioning sessions."""

from fastapi import APIRouter, Query

from livecast.api.v1.dependency import Registry
from livecast.api.v1.schemas.base import ApiOut
from livecast.api.v1.schemas.session import (
    SessionStatusOut,
    StartSessionIn,
    StartSessionOut,
    StopSessionIn,
)

router = APIRouter(prefix="/session", tags=["Session"])


@router.post("/start", response_model=ApiOut[StartSessionOut])
async def start_session(params: StartSessionIn, registry: Registry) -> ApiOut[StartSessionOut]:
    """Start captioning a stream.

    The session starts in `created` and moves to `live` once the first audio
    chunk has been read from the stream.
    """
    session_id = await registry.start_session(
        org_id=params.org_id,
        stream_locator=params.stream_locator,
        target_languages=params.target_languages,
    )
    status = await registry.get_session_status(session_id)
    return ApiOut[StartSessionOut](
        results=StartSessionOut(session_id=session_id, state=status.state)
    )


@router.post("/stop", response_model=ApiOut[SessionStatusOut])
async def stop_session(params: StopSessionIn, registry: Registry) -> ApiOut[SessionStatusOut]:
    """Stop a session.

    No new chunks are accepted once the stop is acknowledged; chunks already in
    flight may finish within the stop grace period.
    """
    summary = await registry.stop_session(params.session_id, wait=params.wait)
    return ApiOut[SessionStatusOut](results=SessionStatusOut.from_summary(summary))


@router.get("/status", response_model=ApiOut[SessionStatusOut])
async def get_session_status(
    registry: Registry,
    session_id: str = Query(..., min_length=1),
) -> ApiOut[SessionStatusOut]:
    summary = await registry.get_session_status(session_id)
    return ApiOut[SessionStatusOut](results=SessionStatusOut.from_summary(summary))


@router.get("/active", response_model=ApiOut[list[SessionStatusOut]])
async def list_active_sessions(
    registry: Registry,
    org_id: str | None = Query(default=None),
) -> ApiOut[list[SessionStatusOut]]:
    summaries = registry.list_active(org_id)
    return ApiOut[list[SessionStatusOut]](
        results=[SessionStatusOut.from_summary(s) for s in summaries]
    )
