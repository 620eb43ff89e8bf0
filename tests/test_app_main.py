"""Application wiring: lifespan, route loading and the demo pipeline end to end."""

import pytest
from fastapi.testclient import TestClient

from livecast.domain.archive.store import MemoryCaptionStore
from livecast.main import app, build_granian_kwargs, build_session_registry
from livecast.services.integrations.transcriber_service import DEMO_PHRASES


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_build_session_registry_in_demo_mode():
    registry = build_session_registry(MemoryCaptionStore())

    assert len(registry) == 0
    assert registry.settings.inflight_window >= 1


def test_granian_kwargs():
    kwargs = build_granian_kwargs()

    assert kwargs["interface"] == "asgi"
    assert isinstance(kwargs["port"], int)


def test_routes_are_loaded(client):
    response = client.get("/api/v1/session/active")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["results"] == []


def test_validation_errors_use_failure_envelope(client):
    response = client.post("/api/v1/session/start", json={"org_id": "org_1"})

    assert response.status_code == 422
    data = response.json()
    assert data["success"] is False
    assert data["errcode"] == "E_INVALID_PARAMS"


def test_demo_session_end_to_end(client):
    response = client.post(
        "/api/v1/session/start",
        json={
            "org_id": "org_demo",
            "stream_locator": "synthetic://demo?seconds=3&rate=0",
            "target_languages": ["es"],
        },
    )
    assert response.status_code == 200
    session_id = response.json()["results"]["session_id"]

    response = client.post("/api/v1/session/stop", json={"session_id": session_id})
    assert response.status_code == 200
    results = response.json()["results"]
    assert results["state"] == "stopped"
    assert results["total_captions"] == 1

    response = client.get(f"/api/v1/archive/{session_id}/captions.vtt", params={"language": "es"})
    assert response.status_code == 200
    assert f"[es] {DEMO_PHRASES[0]}" in response.text


def test_unknown_session_status(client):
    response = client.get("/api/v1/session/status", params={"session_id": "cap_missing"})

    assert response.status_code == 404
    assert response.json()["errcode"] == "E_SESSION_NOT_FOUND"
