"""Unit tests for session control router endpoints."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from livecast.api.v1.dependency import get_session_registry
from livecast.api.v1.errors import app_error_handler
from livecast.api.v1.routers.session import router
from livecast.domain.captioning.models import ErrorEntry, ErrorKind, SessionSummary
from livecast.domain.captioning.registry import SessionRegistry
from livecast.schemas.session_state import SessionState
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


@pytest.fixture
def mock_registry() -> MagicMock:
    """Create a mock SessionRegistry."""
    registry = MagicMock(spec=SessionRegistry)
    registry.start_session = AsyncMock()
    registry.stop_session = AsyncMock()
    registry.get_session_status = AsyncMock()
    return registry


@pytest.fixture
def test_app(mock_registry: MagicMock) -> FastAPI:
    """Create FastAPI test app with dependency overrides."""
    app = FastAPI()
    app.dependency_overrides[get_session_registry] = lambda: mock_registry
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.include_router(router)
    return app


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app)


@pytest.fixture
def sample_summary() -> SessionSummary:
    now = datetime.now(timezone.utc)
    return SessionSummary(
        session_id="cap_0123456789abcdef",
        org_id="org_1",
        state=SessionState.LIVE,
        stream_locator="rtmp://ingest.example.com/live/key",
        target_languages=["es", "fr"],
        created_at=now - timedelta(minutes=2),
        started_at=now - timedelta(minutes=2),
        chunks_received=12,
        total_captions=11,
        failed_chunks=0,
        error_counts={ErrorKind.TRANSLATION_FAILED.value: 1},
        recent_errors=[
            ErrorEntry(
                kind=ErrorKind.TRANSLATION_FAILED,
                message="timed out after 10.0s",
                sequence=3,
                language="fr",
            )
        ],
    )


class TestStartSession:
    def test_start_session_success(self, client, mock_registry, sample_summary):
        mock_registry.start_session.return_value = sample_summary.session_id
        mock_registry.get_session_status.return_value = sample_summary.model_copy(
            update={"state": SessionState.CREATED}
        )

        response = client.post(
            "/session/start",
            json={
                "org_id": "org_1",
                "stream_locator": "rtmp://ingest.example.com/live/key",
                "target_languages": ["es", "fr"],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["results"] == {"session_id": sample_summary.session_id, "state": "created"}
        mock_registry.start_session.assert_called_once_with(
            org_id="org_1",
            stream_locator="rtmp://ingest.example.com/live/key",
            target_languages=["es", "fr"],
        )

    def test_start_session_missing_locator(self, client, mock_registry):
        response = client.post("/session/start", json={"org_id": "org_1"})

        assert response.status_code == 422
        mock_registry.start_session.assert_not_called()

    def test_start_session_invalid_language(self, client, mock_registry):
        mock_registry.start_session.side_effect = AppError(
            errcode=AppErrorCode.E_INVALID_REQUEST,
            errmesg="Invalid language code: 'english!'",
            status_code=HttpStatusCode.BAD_REQUEST,
        )

        response = client.post(
            "/session/start",
            json={
                "org_id": "org_1",
                "stream_locator": "synthetic://demo",
                "target_languages": ["english!"],
            },
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["errcode"] == AppErrorCode.E_INVALID_REQUEST.value


class TestStopSession:
    def test_stop_session_success(self, client, mock_registry, sample_summary):
        stopped = sample_summary.model_copy(
            update={"state": SessionState.STOPPED, "ended_at": datetime.now(timezone.utc)}
        )
        mock_registry.stop_session.return_value = stopped

        response = client.post("/session/stop", json={"session_id": stopped.session_id})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["state"] == "stopped"
        assert results["duration_seconds"] > 0
        mock_registry.stop_session.assert_called_once_with(stopped.session_id, wait=True)

    def test_stop_session_without_wait(self, client, mock_registry, sample_summary):
        mock_registry.stop_session.return_value = sample_summary.model_copy(
            update={"state": SessionState.STOPPING}
        )

        response = client.post(
            "/session/stop", json={"session_id": sample_summary.session_id, "wait": False}
        )

        assert response.json()["results"]["state"] == "stopping"
        mock_registry.stop_session.assert_called_once_with(sample_summary.session_id, wait=False)

    def test_stop_session_not_found(self, client, mock_registry):
        mock_registry.stop_session.side_effect = AppError(
            errcode=AppErrorCode.E_SESSION_NOT_FOUND,
            errmesg="Session not found: cap_missing",
            status_code=HttpStatusCode.NOT_FOUND,
        )

        response = client.post("/session/stop", json={"session_id": "cap_missing"})

        assert response.status_code == 404
        assert response.json()["errcode"] == AppErrorCode.E_SESSION_NOT_FOUND.value

    def test_stop_aborted_session(self, client, mock_registry):
        mock_registry.stop_session.side_effect = AppError(
            errcode=AppErrorCode.E_SESSION_ABORTED,
            errmesg="Session cap_x was aborted after repeated chunk failures",
            status_code=HttpStatusCode.CONFLICT,
        )

        response = client.post("/session/stop", json={"session_id": "cap_x"})

        assert response.status_code == 409
        assert response.json()["errcode"] == AppErrorCode.E_SESSION_ABORTED.value


class TestSessionStatus:
    def test_status_includes_recent_errors(self, client, mock_registry, sample_summary):
        mock_registry.get_session_status.return_value = sample_summary

        response = client.get("/session/status", params={"session_id": sample_summary.session_id})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["state"] == "live"
        assert results["chunks_received"] == 12
        assert results["error_counts"] == {"TranslationFailed": 1}
        assert results["recent_errors"][0]["kind"] == "TranslationFailed"
        assert results["recent_errors"][0]["language"] == "fr"

    def test_status_requires_session_id(self, client):
        response = client.get("/session/status")

        assert response.status_code == 422

    def test_list_active_sessions(self, client, mock_registry, sample_summary):
        mock_registry.list_active.return_value = [sample_summary]

        response = client.get("/session/active", params={"org_id": "org_1"})

        assert response.status_code == 200
        assert [s["session_id"] for s in response.json()["results"]] == [sample_summary.session_id]
        mock_registry.list_active.assert_called_once_with("org_1")


def test_missing_registry_returns_service_unavailable():
    app = FastAPI()
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.include_router(router)

    response = TestClient(app).get("/session/status", params={"session_id": "cap_x"})

    assert response.status_code == 503
