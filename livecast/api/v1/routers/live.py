"""Live caption delivery over websockets.

Server -> client messages:
    {"type": "subscribed", "channel": ..., "language": ...}
    {"type": "caption", "data": {sessionId, sequence, timestamp, sourceText,
                                 translations, status, wordTimings?, displayText, language}}
    {"type": "language", "language": ...}
    {"type": "pong"}

Client -> server messages:
    {"type": "set_language", "language": "fr"}
    {"type": "ping"}
"""

import orjson
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from loguru import logger

from livecast.api.v1.dependency import WsRegistry
from livecast.domain.broadcast.hub import org_channel, session_channel
from livecast.domain.broadcast.subscribers import WebSocketSubscriber
from livecast.domain.captioning.registry import SessionRegistry

router = APIRouter(prefix="/live", tags=["Live"])

WS_CLOSE_SESSION_NOT_LIVE = 4404


async def _serve_subscriber(
    websocket: WebSocket,
    registry: SessionRegistry,
    channel: str,
    language: str | None,
) -> None:
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket, language=(language or "").lower() or None)
    await registry.hub.subscribe(channel, subscriber)
    try:
        await websocket.send_bytes(
            orjson.dumps({"type": "subscribed", "channel": channel, "language": subscriber.language})
        )
        while True:
            raw = await websocket.receive_text()
            try:
                message = orjson.loads(raw)
            except orjson.JSONDecodeError:
                logger.debug(f"Ignoring malformed message from {subscriber.subscriber_id}")
                continue
            if not isinstance(message, dict):
                continue

            kind = message.get("type")
            if kind == "set_language":
                subscriber.set_language((message.get("language") or "").lower())
                await websocket.send_bytes(
                    orjson.dumps({"type": "language", "language": subscriber.language})
                )
            elif kind == "ping":
                await websocket.send_bytes(orjson.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        logger.debug(f"Subscriber {subscriber.subscriber_id} disconnected from {channel}")
    finally:
        await registry.hub.unsubscribe(channel, subscriber.subscriber_id)


@router.websocket("/session/{session_id}")
async def live_session_captions(
    websocket: WebSocket,
    session_id: str,
    registry: WsRegistry,
    language: str | None = Query(default=None),
) -> None:
    """Captions of one running session."""
    if registry.get_orchestrator(session_id) is None:
        await websocket.close(code=WS_CLOSE_SESSION_NOT_LIVE, reason="Session is not live")
        return
    await _serve_subscriber(websocket, registry, session_channel(session_id), language)


@router.websocket("/org/{org_id}")
async def live_org_captions(
    websocket: WebSocket,
    org_id: str,
    registry: WsRegistry,
    language: str | None = Query(default=None),
) -> None:
    """Captions of every session of an organization."""
    await _serve_subscriber(websocket, registry, org_channel(org_id), language)
