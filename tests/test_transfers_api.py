"""
Tests for the transfer and authorization API endpoints.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import AuthExpiredError
from app.main import app as fastapi_app
from app.models.transfer import TransferResponse
from app.services.credentials import InMemoryCredentialStore


@pytest.fixture
def client():
    return TestClient(fastapi_app)


@pytest.fixture
def mock_cache():
    with patch("app.api.transfers.cache_manager") as cache:
        cache.health_check = AsyncMock(return_value={"status": "healthy", "connected": True})
        cache.get_cache_stats = MagicMock(return_value={"hit_rate": 50.0, "total_requests": 4})
        yield cache


@pytest.fixture
def mock_manager(mock_cache):
    with patch("app.api.transfers.transfer_manager") as manager:
        manager._running = True
        manager._worker_tasks = [MagicMock(), MagicMock()]
        manager.max_concurrent_transfers = 2
        manager.submit_transfer = AsyncMock(return_value="task-1")
        manager.get_task_status = AsyncMock(
            return_value=TransferResponse(task_id="task-1", status="pending")
        )
        manager.get_task_events = MagicMock(return_value=[])
        manager.cancel_transfer = AsyncMock(return_value=True)
        manager.get_stats = AsyncMock(return_value={"active_transfers": 0, "total_tasks": 1})
        yield manager


VALID_BODY = {
    "source_url": "https://cdn.example.com/video.mp4",
    "metadata": {"title": "Launch", "privacy_status": "unlisted"},
}


class TestTransfersAPI:
    """Test transfer endpoints."""

    def test_create_transfer(self, client, mock_manager):
        response = client.post("/api/v1/transfers", json=VALID_BODY)

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["data"]["task_id"] == "task-1"
        assert body["data"]["status"] == "pending"
        request = mock_manager.submit_transfer.await_args.args[0]
        assert request.metadata.privacy_status == "unlisted"

    def test_create_transfer_invalid_url(self, client, mock_manager):
        response = client.post(
            "/api/v1/transfers",
            json={**VALID_BODY, "source_url": "ftp://cdn.example.com/video.mp4"}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        mock_manager.submit_transfer.assert_not_called()

    def test_create_transfer_missing_title(self, client, mock_manager):
        response = client.post(
            "/api/v1/transfers",
            json={"source_url": "https://cdn.example.com/video.mp4", "metadata": {}}
        )

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "title"

    def test_get_transfer_status(self, client, mock_manager):
        mock_manager.get_task_status.return_value = TransferResponse(
            task_id="task-1", status="transferring", progress=40,
            bytes_confirmed=400, total_size=1_000
        )

        response = client.get("/api/v1/transfers/task-1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "transferring"
        assert data["bytes_confirmed"] == 400

    def test_get_transfer_status_not_found(self, client, mock_manager):
        mock_manager.get_task_status.return_value = None

        response = client.get("/api/v1/transfers/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "transfer_not_found"

    def test_get_transfer_events(self, client, mock_manager):
        mock_manager.get_task_events.return_value = [
            {"kind": "session_opened", "bytes_confirmed": 0},
            {"kind": "chunk_acked", "bytes_confirmed": 500},
        ]

        response = client.get("/api/v1/transfers/task-1/events")

        assert response.status_code == 200
        assert [e["kind"] for e in response.json()["data"]] == ["session_opened", "chunk_acked"]

    def test_get_transfer_events_not_found(self, client, mock_manager):
        mock_manager.get_task_events.return_value = None

        response = client.get("/api/v1/transfers/missing/events")

        assert response.status_code == 404

    def test_cancel_transfer(self, client, mock_manager):
        response = client.delete("/api/v1/transfers/task-1")

        assert response.status_code == 200
        mock_manager.cancel_transfer.assert_awaited_once_with("task-1")

    def test_cancel_finished_transfer(self, client, mock_manager):
        mock_manager.cancel_transfer.return_value = False

        response = client.delete("/api/v1/transfers/task-1")

        assert response.status_code == 404
        assert response.json()["error"] == "task_not_found_or_finished"

    def test_stats(self, client, mock_manager):
        response = client.get("/api/v1/transfers/stats")

        assert response.status_code == 200
        assert response.json()["data"]["total_tasks"] == 1
        assert response.json()["data"]["status_cache"]["hit_rate"] == 50.0

    def test_health(self, client, mock_manager):
        response = client.get("/api/v1/transfers/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_workers"] == 2
        assert body["cache"]["connected"] is True

    def test_health_degraded_without_redis(self, client, mock_manager, mock_cache):
        mock_cache.health_check.return_value = {"status": "unhealthy", "connected": False}

        response = client.get("/api/v1/transfers/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_health_when_stopped(self, client, mock_manager):
        mock_manager._running = False

        response = client.get("/api/v1/transfers/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_root_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAuthAPI:
    """Test the OAuth consent flow endpoints."""

    @pytest.fixture
    def mock_oauth(self):
        with patch("app.api.auth.oauth_client") as oauth:
            oauth.build_authorization_url = MagicMock(
                side_effect=lambda state: f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"
            )
            oauth.exchange_code = AsyncMock(return_value={
                "access_token": "ya29.a",
                "refresh_token": "1//r",
                "scope": "https://www.googleapis.com/auth/youtube.upload",
            })
            yield oauth

    @pytest.fixture
    def store(self):
        store = InMemoryCredentialStore()
        with patch("app.api.auth._credential_store", return_value=store):
            yield store

    def _issue_state(self, client):
        response = client.get("/api/v1/youtube/auth", follow_redirects=False)
        assert response.status_code == 302
        return response.headers["location"].split("state=", 1)[1]

    def test_authorize_redirects_to_consent(self, client, mock_oauth):
        state = self._issue_state(client)

        assert len(state) == 64
        mock_oauth.build_authorization_url.assert_called_once_with(state)

    def test_callback_stores_tokens(self, client, mock_oauth, store):
        channel = {"id": "UC123", "snippet": {"title": "My channel"}}
        state = self._issue_state(client)

        with patch("app.api.auth._fetch_channel_info", new=AsyncMock(return_value=channel)) as lookup:
            response = client.get(
                "/api/v1/youtube/auth/callback", params={"code": "auth-code", "state": state}
            )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["channel"] == channel
        assert data["has_refresh_token"] is True
        mock_oauth.exchange_code.assert_awaited_once_with("auth-code")
        lookup.assert_awaited_once_with("ya29.a")

    def test_callback_saves_to_store(self, client, mock_oauth, store):
        state = self._issue_state(client)

        with patch("app.api.auth._fetch_channel_info", new=AsyncMock(return_value=None)):
            client.get("/api/v1/youtube/auth/callback", params={"code": "auth-code", "state": state})

        saved = asyncio.run(store.load())
        assert saved["refresh_token"] == "1//r"

    def test_callback_rejects_unknown_state(self, client, mock_oauth, store):
        response = client.get(
            "/api/v1/youtube/auth/callback", params={"code": "auth-code", "state": "forged"}
        )

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "state"
        mock_oauth.exchange_code.assert_not_called()

    def test_state_is_single_use(self, client, mock_oauth, store):
        state = self._issue_state(client)

        with patch("app.api.auth._fetch_channel_info", new=AsyncMock(return_value=None)):
            first = client.get("/api/v1/youtube/auth/callback", params={"code": "c", "state": state})
            second = client.get("/api/v1/youtube/auth/callback", params={"code": "c", "state": state})

        assert first.status_code == 200
        assert second.status_code == 422

    def test_callback_exchange_rejected(self, client, mock_oauth, store):
        mock_oauth.exchange_code.side_effect = AuthExpiredError(
            reason="token endpoint returned HTTP 400", upstream_status=400
        )
        state = self._issue_state(client)

        response = client.get("/api/v1/youtube/auth/callback", params={"code": "bad", "state": state})

        assert response.status_code == 401
        assert response.json()["error"] == "auth_expired"
