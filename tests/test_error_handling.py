"""
Unit tests for the error handling system.

Tests custom exceptions, upload status classification, retry logic
and the error response middleware.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.core.exceptions import (
    MediaRelayException, ErrorCode, ValidationError, ConfigurationError,
    TransferError, SourceMetadataMissingError, SessionRejectedError,
    AuthExpiredError, RetryableTransportError, FatalProtocolError,
    TransferNotFoundError, classify_upload_status, parse_retry_after
)
from app.core.retry import RetryConfig, RetryManager
from app.middleware.error_handler import ErrorHandlingMiddleware, register_exception_handlers


class TestMediaRelayExceptions:
    """Test custom exception classes."""

    def test_base_exception_creation(self):
        exc = MediaRelayException(
            message="Test error",
            error_code=ErrorCode.INTERNAL_ERROR,
            status_code=500,
            suggestion="Try again",
            details={"key": "value"},
            retryable=True
        )

        assert exc.message == "Test error"
        assert exc.error_code == ErrorCode.INTERNAL_ERROR
        assert exc.status_code == 500
        assert exc.suggestion == "Try again"
        assert exc.details == {"key": "value"}
        assert exc.retryable is True

    def test_exception_to_dict(self):
        exc = SessionRejectedError(upstream_status=400, upstream_body='{"error": "invalid title"}')

        result = exc.to_dict()

        assert result["success"] is False
        assert result["error"] == "session_rejected"
        assert "HTTP 400" in result["message"]
        assert result["retryable"] is False
        assert result["details"]["upstream_status"] == 400
        assert result["details"]["upstream_body"] == '{"error": "invalid title"}'

    def test_default_suggestions(self):
        exc = AuthExpiredError()
        assert "re-authenticate" in exc.suggestion.lower()

        exc = SourceMetadataMissingError(url="https://media.test/a.mp4", header="Content-Length")
        assert "content-length" in exc.suggestion.lower()

    def test_transfer_error_context(self):
        exc = FatalProtocolError("session expired", upstream_status=410)

        exc.with_context(cursor=4096, attempts=2)

        assert exc.cursor == 4096
        assert exc.attempts == 2
        assert exc.details["cursor"] == 4096
        assert exc.details["reason"] == "session expired"

    def test_with_context_keeps_existing_values(self):
        exc = FatalProtocolError("regression", cursor=100, attempts=1)

        exc.with_context(cursor=900, attempts=5)

        assert exc.cursor == 100
        assert exc.attempts == 1

    def test_retryable_transport_error(self):
        exc = RetryableTransportError("HTTP 503", retry_after=12.0, upstream_status=503)

        assert exc.retryable is True
        assert exc.retry_after == 12.0
        assert exc.details["retry_after"] == 12.0
        assert isinstance(exc, TransferError)

    def test_auth_expired_is_not_retryable(self):
        exc = AuthExpiredError(reason="upload returned HTTP 401", upstream_status=401)

        assert exc.retryable is False
        assert exc.status_code == 401
        assert "401" in exc.message

    def test_validation_error_field(self):
        exc = ValidationError("bad state", field="state")

        assert exc.status_code == 422
        assert exc.details["field"] == "state"

    def test_configuration_error(self):
        exc = ConfigurationError(setting="max_chunk_size", reason="not a multiple")

        assert exc.error_code == ErrorCode.CONFIGURATION_ERROR
        assert exc.details["setting"] == "max_chunk_size"


class TestUploadStatusClassification:
    """Test mapping of destination statuses onto protocol outcomes."""

    @pytest.mark.parametrize("status,expected", [
        (200, "complete"),
        (201, "complete"),
        (308, "incomplete"),
        (408, "transient"),
        (429, "transient"),
        (500, "transient"),
        (503, "transient"),
        (599, "transient"),
        (401, "auth"),
        (403, "auth"),
        (400, "fatal"),
        (404, "fatal"),
        (410, "fatal"),
    ])
    def test_classify_upload_status(self, status, expected):
        assert classify_upload_status(status) == expected

    def test_parse_retry_after(self):
        assert parse_retry_after("7") == 7.0
        assert parse_retry_after("1.5") == 1.5
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("-3") is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


class TestRetryLogic:
    """Test retry configuration and manager."""

    def test_retry_config_defaults(self):
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 60.0
        assert config.exponential_base == 2.0
        assert config.jitter is True

    def test_calculate_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=False)

        assert config.calculate_delay(0) == 1.0
        assert config.calculate_delay(1) == 2.0
        assert config.calculate_delay(2) == 4.0
        assert config.calculate_delay(5) == 10.0

    def test_calculate_delay_with_jitter(self):
        config = RetryConfig(base_delay=10.0, max_delay=100.0, jitter=True)

        for _ in range(20):
            delay = config.calculate_delay(0)
            assert 9.0 <= delay <= 11.0

    def test_from_settings(self):
        from app.core.config import settings

        config = RetryConfig.from_settings()

        assert config.max_attempts == settings.max_chunk_attempts
        assert RetryConfig.from_settings(max_attempts=2).max_attempts == 2

    @pytest.mark.asyncio
    async def test_retry_success_after_failures(self):
        manager = RetryManager(RetryConfig(max_attempts=3, base_delay=0, jitter=False))
        mock_func = AsyncMock(side_effect=[ConnectionError("boom"), ConnectionError("boom"), "ok"])
        mock_func.__name__ = "probe"

        result = await manager.retry_async(mock_func)

        assert result == "ok"
        assert mock_func.call_count == 3

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self):
        manager = RetryManager(RetryConfig(max_attempts=2, base_delay=0, jitter=False))
        mock_func = AsyncMock(side_effect=ConnectionError("down"))
        mock_func.__name__ = "probe"

        with pytest.raises(ConnectionError):
            await manager.retry_async(mock_func)

        assert mock_func.call_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_exception(self):
        manager = RetryManager(RetryConfig(max_attempts=3, base_delay=0, jitter=False))
        mock_func = AsyncMock(side_effect=SourceMetadataMissingError(url="u", header="Content-Type"))
        mock_func.__name__ = "probe"

        with pytest.raises(SourceMetadataMissingError):
            await manager.retry_async(mock_func)

        assert mock_func.call_count == 1

    @pytest.mark.asyncio
    async def test_retryable_exception_flag(self):
        manager = RetryManager(RetryConfig(max_attempts=3, base_delay=0, jitter=False))
        mock_func = AsyncMock(side_effect=[RetryableTransportError("HTTP 503"), "ok"])
        mock_func.__name__ = "upload"

        with patch("app.core.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await manager.retry_async(mock_func)

        assert result == "ok"
        mock_sleep.assert_awaited_once()


def _build_app():
    app = FastAPI()
    app.add_middleware(ErrorHandlingMiddleware)
    register_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise TransferNotFoundError("abc")

    @app.get("/forbidden")
    async def forbidden():
        raise HTTPException(status_code=403, detail="nope")

    @app.get("/items/{item_id}")
    async def item(item_id: int):
        return {"item_id": item_id}

    @app.get("/crash")
    async def crash():
        raise RuntimeError("unexpected")

    return app


class TestErrorHandlingMiddleware:
    """Test error response formatting."""

    @pytest.fixture
    def client(self):
        return TestClient(_build_app(), raise_server_exceptions=False)

    def test_application_exception(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "transfer_not_found"
        assert body["details"]["task_id"] == "abc"
        assert "response_time_ms" in body

    def test_http_exception(self, client):
        response = client.get("/forbidden")

        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "nope"

    def test_validation_exception(self, client):
        response = client.get("/items/not-a-number")

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"

    def test_unexpected_exception(self, client):
        response = client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_error"

    def test_successful_request_passes_through(self, client):
        response = client.get("/items/3")

        assert response.status_code == 200
        assert response.json() == {"item_id": 3}
