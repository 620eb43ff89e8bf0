"""Websocket delivery tests against a registry running fake collaborators."""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from livecast.api.v1.errors import app_error_handler
from livecast.api.v1.routers import live, session
from livecast.api.v1.routers.live import WS_CLOSE_SESSION_NOT_LIVE
from livecast.domain.archive.store import MemoryCaptionStore
from livecast.domain.broadcast.hub import BroadcastHub
from livecast.domain.captioning.registry import SessionRegistry
from livecast.utils.app_errors import AppError
from tests.fixtures.pipeline_fixtures import (
    EndlessSource,
    FakeTranscriber,
    FakeTranslator,
    ScriptedSource,
    make_settings,
)


def _app(source_factory) -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.include_router(session.router)
    app.include_router(live.router)
    app.state.session_registry = SessionRegistry(
        store=MemoryCaptionStore(),
        hub=BroadcastHub(send_timeout=1.0),
        transcriber=FakeTranscriber(),
        translator=FakeTranslator(),
        settings=make_settings(),
        source_factory=source_factory,
    )
    return app


def _receive(ws) -> dict:
    return json.loads(ws.receive_bytes())


def test_org_channel_receives_captions_of_new_sessions():
    app = _app(lambda locator: ScriptedSource([(3, False)], delay=0.05))

    with TestClient(app) as client:
        with client.websocket_connect("/live/org/org_1?language=ES") as ws:
            assert _receive(ws) == {"type": "subscribed", "channel": "org:org_1", "language": "es"}

            response = client.post(
                "/session/start",
                json={
                    "org_id": "org_1",
                    "stream_locator": "synthetic://demo",
                    "target_languages": ["es", "fr"],
                },
            )
            assert response.status_code == 200
            session_id = response.json()["results"]["session_id"]

            captions = [_receive(ws) for _ in range(3)]
            assert {c["type"] for c in captions} == {"caption"}
            assert [c["data"]["sequence"] for c in captions] == [0, 1, 2]
            assert captions[0]["data"]["sessionId"] == session_id
            assert captions[0]["data"]["displayText"] == "[es] chunk 0"
            assert captions[0]["data"]["translations"] == {
                "es": "[es] chunk 0",
                "fr": "[fr] chunk 0",
            }

            ws.send_text(json.dumps({"type": "set_language", "language": "FR"}))
            assert _receive(ws) == {"type": "language", "language": "fr"}

        client.post("/session/stop", json={"session_id": session_id})


def test_ping_and_malformed_messages():
    app = _app(lambda locator: ScriptedSource([]))

    with TestClient(app) as client:
        with client.websocket_connect("/live/org/org_1") as ws:
            assert _receive(ws)["language"] is None
            ws.send_text("not json")
            ws.send_text(json.dumps(["not", "an", "object"]))
            ws.send_text(json.dumps({"type": "ping"}))
            assert _receive(ws) == {"type": "pong"}


def test_session_channel_requires_live_session():
    app = _app(lambda locator: ScriptedSource([]))

    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/live/session/cap_missing") as ws:
                ws.receive_bytes()

    assert exc_info.value.code == WS_CLOSE_SESSION_NOT_LIVE


def test_session_channel_streams_live_session():
    app = _app(lambda locator: EndlessSource(interval=0.02))

    with TestClient(app) as client:
        response = client.post(
            "/session/start",
            json={"org_id": "org_1", "stream_locator": "synthetic://demo", "target_languages": []},
        )
        session_id = response.json()["results"]["session_id"]

        with client.websocket_connect(f"/live/session/{session_id}") as ws:
            assert _receive(ws)["channel"] == f"session:{session_id}"
            caption = _receive(ws)
            assert caption["type"] == "caption"
            assert caption["data"]["displayText"].startswith("chunk ")

        response = client.post("/session/stop", json={"session_id": session_id})
        results = response.json()["results"]
        assert results["state"] == "stopped"
        assert results["total_captions"] == results["chunks_received"]
