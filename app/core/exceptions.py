"""
Error handling system for MediaRelay.

This module provides the exception hierarchy for the transfer pipeline,
error response formatting and upload status classification.
"""

import logging
from typing import Dict, Any, Optional
from enum import Enum


logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for consistent error handling."""

    # Validation errors
    VALIDATION_ERROR = "validation_error"
    INVALID_URL = "invalid_url"
    CONFIGURATION_ERROR = "configuration_error"

    # Source errors
    SOURCE_UNREACHABLE = "source_unreachable"
    SOURCE_METADATA_MISSING = "source_metadata_missing"
    RANGE_FETCH_FAILED = "range_fetch_failed"

    # Destination errors
    SESSION_REJECTED = "session_rejected"
    AUTH_EXPIRED = "auth_expired"
    RETRYABLE_TRANSPORT = "retryable_transport"
    FATAL_PROTOCOL = "fatal_protocol"
    MALFORMED_COMPLETION = "malformed_completion"

    # Task errors
    TRANSFER_CANCELLED = "transfer_cancelled"
    TRANSFER_NOT_FOUND = "transfer_not_found"

    # System errors
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INTERNAL_ERROR = "internal_error"


class MediaRelayException(Exception):
    """
    Base exception class for all MediaRelay errors.

    Provides structured error information including error codes,
    user-friendly messages, and actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 400,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False
    ):
        """
        Initialize MediaRelay exception.

        Args:
            message: Human-readable error message
            error_code: Standardized error code
            status_code: HTTP status code
            suggestion: Actionable suggestion for the user
            details: Additional error details
            retryable: Whether the operation can be retried
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.suggestion = suggestion or self._get_default_suggestion()
        self.details = details or {}
        self.retryable = retryable

    def _get_default_suggestion(self) -> str:
        """Get default suggestion based on error code."""
        suggestions = {
            ErrorCode.INVALID_URL: "Please provide a valid URL starting with http:// or https://",
            ErrorCode.SOURCE_UNREACHABLE: "Check that the source URL is reachable from the server",
            ErrorCode.SOURCE_METADATA_MISSING: "The source must report Content-Length and Content-Type on HEAD requests",
            ErrorCode.RANGE_FETCH_FAILED: "The source must support HTTP Range requests",
            ErrorCode.SESSION_REJECTED: "Check the video metadata and the destination response for details",
            ErrorCode.AUTH_EXPIRED: "Re-authenticate the destination account and try again",
            ErrorCode.FATAL_PROTOCOL: "Start a new transfer; the upload session cannot be resumed",
            ErrorCode.TRANSFER_CANCELLED: "Submit the transfer again to restart it",
            ErrorCode.RATE_LIMIT_EXCEEDED: "Please wait a moment before trying again",
            ErrorCode.SERVICE_UNAVAILABLE: "The service is temporarily unavailable. Please try again later"
        }
        return suggestions.get(self.error_code, "Please try again or contact support if the problem persists")

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "success": False,
            "error": self.error_code.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "retryable": self.retryable,
            "details": self.details
        }


# Validation Errors
class ValidationError(MediaRelayException):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=422,
            **kwargs
        )
        if field:
            self.details["field"] = field


class ConfigurationError(MediaRelayException):
    """Raised when a configuration value cannot be used."""

    def __init__(self, setting: str, reason: str, **kwargs):
        super().__init__(
            message=f"Invalid configuration for {setting}: {reason}",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            status_code=500,
            **kwargs
        )
        self.details["setting"] = setting


# Transfer Errors
class TransferError(MediaRelayException):
    """
    Base class for failures of the chunked transfer pipeline.

    Carries enough context for a manual resumption: the last confirmed
    cursor, the attempt count and the upstream status code and body.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        cursor: Optional[int] = None,
        attempts: Optional[int] = None,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
        status_code: int = 502,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            **kwargs
        )
        self.cursor = cursor
        self.attempts = attempts
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body
        for key, value in (
            ("cursor", cursor),
            ("attempts", attempts),
            ("upstream_status", upstream_status),
            ("upstream_body", upstream_body),
        ):
            if value is not None:
                self.details[key] = value

    def with_context(self, cursor: Optional[int] = None, attempts: Optional[int] = None) -> "TransferError":
        """Attach transfer progress to an error raised below the relay."""
        if cursor is not None and self.cursor is None:
            self.cursor = cursor
            self.details["cursor"] = cursor
        if attempts is not None and self.attempts is None:
            self.attempts = attempts
            self.details["attempts"] = attempts
        return self


class SourceUnreachableError(TransferError):
    """Raised when the source cannot be reached for probing."""

    def __init__(self, url: str, reason: Optional[str] = None, retryable: bool = True, **kwargs):
        message = "Source is unreachable"
        if reason:
            message += f": {reason}"

        super().__init__(
            message=message,
            error_code=ErrorCode.SOURCE_UNREACHABLE,
            retryable=retryable,
            **kwargs
        )
        self.details["url"] = url


class SourceMetadataMissingError(TransferError):
    """Raised when the source does not report size or content type."""

    def __init__(self, url: str, header: str, **kwargs):
        super().__init__(
            message=f"Source did not report a usable {header} header",
            error_code=ErrorCode.SOURCE_METADATA_MISSING,
            status_code=422,
            **kwargs
        )
        self.details.update({"url": url, "header": header})


class RangeFetchError(TransferError):
    """Raised when the source does not honor a byte range request."""

    def __init__(self, start_byte: int, end_byte: int, reason: str, **kwargs):
        super().__init__(
            message=f"Range fetch {start_byte}-{end_byte} failed: {reason}",
            error_code=ErrorCode.RANGE_FETCH_FAILED,
            **kwargs
        )
        self.details.update({"start_byte": start_byte, "end_byte": end_byte})


class SessionRejectedError(TransferError):
    """Raised when the destination refuses to open an upload session."""

    def __init__(self, upstream_status: int, upstream_body: str, **kwargs):
        super().__init__(
            message=f"Destination rejected the upload session (HTTP {upstream_status})",
            error_code=ErrorCode.SESSION_REJECTED,
            upstream_status=upstream_status,
            upstream_body=upstream_body,
            **kwargs
        )


class AuthExpiredError(TransferError):
    """Raised when the bearer token is rejected; re-authentication is required."""

    def __init__(self, reason: Optional[str] = None, **kwargs):
        message = "Destination credentials expired or were rejected"
        if reason:
            message += f": {reason}"

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_EXPIRED,
            status_code=401,
            retryable=False,
            **kwargs
        )


class RetryableTransportError(TransferError):
    """Raised for transient failures that the relay recovers with backoff and resync."""

    def __init__(self, reason: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(
            message=f"Transient transport failure: {reason}",
            error_code=ErrorCode.RETRYABLE_TRANSPORT,
            status_code=503,
            retryable=True,
            **kwargs
        )
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after"] = retry_after


class FatalProtocolError(TransferError):
    """Raised when the upload session cannot continue."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            message=f"Upload failed: {reason}",
            error_code=ErrorCode.FATAL_PROTOCOL,
            retryable=False,
            **kwargs
        )
        self.details["reason"] = reason


class MalformedCompletionResponseError(TransferError):
    """Raised when the terminal response does not identify the created asset."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            message=f"Malformed completion response: {reason}",
            error_code=ErrorCode.MALFORMED_COMPLETION,
            **kwargs
        )
        self.details["reason"] = reason


class TransferCancelledError(TransferError):
    """Raised when the caller cancels a transfer at a chunk boundary."""

    def __init__(self, **kwargs):
        super().__init__(
            message="Transfer cancelled by user",
            error_code=ErrorCode.TRANSFER_CANCELLED,
            status_code=409,
            **kwargs
        )


class TransferNotFoundError(MediaRelayException):
    """Raised when a transfer task id is unknown."""

    def __init__(self, task_id: str, **kwargs):
        super().__init__(
            message=f"Transfer {task_id} not found",
            error_code=ErrorCode.TRANSFER_NOT_FOUND,
            status_code=404,
            suggestion="Please check the task ID and try again",
            **kwargs
        )
        self.details["task_id"] = task_id


class InternalError(MediaRelayException):
    """Raised for unexpected internal errors."""

    def __init__(self, reason: Optional[str] = None, **kwargs):
        message = "An internal error occurred"
        if reason:
            message += f": {reason}"

        super().__init__(
            message=message,
            error_code=ErrorCode.INTERNAL_ERROR,
            status_code=500,
            retryable=False,
            **kwargs
        )
        if reason:
            self.details["reason"] = reason


TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def classify_upload_status(status_code: int) -> str:
    """
    Classify a destination response status for the resumable upload protocol.

    Args:
        status_code: HTTP status returned by the destination

    Returns:
        One of "complete", "incomplete", "transient", "auth", "fatal"
    """
    if status_code in (200, 201):
        return "complete"
    if status_code == 308:
        return "incomplete"
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return "transient"
    if status_code in (401, 403):
        return "auth"
    return "fatal"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
