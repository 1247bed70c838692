"""
Error handling middleware for MediaRelay.

This module provides error handling middleware with user-friendly
error responses and structured logging.
"""

import time
import logging
import traceback
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.exceptions import MediaRelayException, InternalError, ErrorCode


logger = logging.getLogger(__name__)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for handling all application errors with consistent formatting.

    Provides structured error responses and logging for all types of
    errors that occur during request processing.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        """
        Process request and handle any errors that occur.

        Args:
            request: FastAPI request object
            call_next: Next middleware/endpoint in the chain

        Returns:
            Response object with error handling applied
        """
        start_time = time.time()
        request.state.start_time = start_time

        try:
            response = await call_next(request)
            return response

        except MediaRelayException as e:
            return self._handle_app_exception(request, e, start_time)

        except HTTPException as e:
            return self._handle_http_exception(request, e, start_time)

        except RequestValidationError as e:
            return self._handle_validation_exception(request, e, start_time)

        except Exception as e:
            return self._handle_unexpected_exception(request, e, start_time)

    def _handle_app_exception(
        self,
        request: Request,
        exc: MediaRelayException,
        start_time: float
    ) -> JSONResponse:
        """Handle MediaRelay custom exceptions."""
        response_time = (time.time() - start_time) * 1000

        log_data = {
            "error_code": exc.error_code.value,
            "error_message": exc.message,
            "path": request.url.path,
            "method": request.method,
            "response_time_ms": round(response_time, 2),
            "retryable": exc.retryable
        }

        if exc.status_code >= 500:
            logger.error(f"MediaRelay error: {exc.message}", extra=log_data)
        else:
            logger.warning(f"MediaRelay error: {exc.message}", extra=log_data)

        response_data = exc.to_dict()
        response_data["response_time_ms"] = round(response_time, 2)

        return JSONResponse(
            status_code=exc.status_code,
            content=response_data
        )

    def _handle_http_exception(
        self,
        request: Request,
        exc: StarletteHTTPException,
        start_time: float
    ) -> JSONResponse:
        """Handle FastAPI HTTP exceptions."""
        response_time = (time.time() - start_time) * 1000

        logger.warning(
            f"HTTP exception: {exc.detail}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
                "response_time_ms": round(response_time, 2)
            }
        )

        error_code = self._map_http_status_to_error_code(exc.status_code)

        response_data = {
            "success": False,
            "error": error_code.value,
            "message": str(exc.detail),
            "suggestion": self._get_http_error_suggestion(exc.status_code),
            "retryable": exc.status_code >= 500,
            "response_time_ms": round(response_time, 2)
        }

        return JSONResponse(
            status_code=exc.status_code,
            content=response_data,
            headers=getattr(exc, "headers", None)
        )

    def _handle_validation_exception(
        self,
        request: Request,
        exc: RequestValidationError,
        start_time: float
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        response_time = (time.time() - start_time) * 1000

        # Extract the first validation error for a cleaner message
        errors = exc.errors()
        error_detail = errors[0] if errors else {}
        field_name = error_detail.get('loc', ['unknown'])[-1] if error_detail.get('loc') else 'unknown'
        error_msg = error_detail.get('msg', 'Validation error')

        logger.warning(
            f"Validation error: {error_msg}",
            extra={
                "field": field_name,
                "path": request.url.path,
                "method": request.method,
                "response_time_ms": round(response_time, 2)
            }
        )

        if str(field_name).lower().endswith('url'):
            user_message = "Please provide a valid http:// or https:// URL"
            suggestion = "The source must be reachable over HTTP and support Range requests"
        else:
            user_message = f"Invalid {field_name}: {error_msg}"
            suggestion = "Please check your input and try again"

        response_data = {
            "success": False,
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": user_message,
            "suggestion": suggestion,
            "retryable": False,
            "details": {
                "field": str(field_name),
                "validation_errors": [
                    {"loc": [str(part) for part in err.get("loc", [])], "msg": err.get("msg", "")}
                    for err in errors
                ]
            },
            "response_time_ms": round(response_time, 2)
        }

        return JSONResponse(
            status_code=422,
            content=response_data
        )

    def _handle_unexpected_exception(
        self,
        request: Request,
        exc: Exception,
        start_time: float
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        response_time = (time.time() - start_time) * 1000

        logger.error(
            f"Unexpected error: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "response_time_ms": round(response_time, 2),
                "traceback": traceback.format_exc()
            }
        )

        internal_error = InternalError(reason=str(exc))
        response_data = internal_error.to_dict()
        response_data["response_time_ms"] = round(response_time, 2)

        return JSONResponse(
            status_code=500,
            content=response_data
        )

    def _map_http_status_to_error_code(self, status_code: int) -> ErrorCode:
        """Map HTTP status codes to error codes."""
        mapping = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.AUTH_EXPIRED,
            404: ErrorCode.TRANSFER_NOT_FOUND,
            429: ErrorCode.RATE_LIMIT_EXCEEDED,
            500: ErrorCode.INTERNAL_ERROR,
            502: ErrorCode.SERVICE_UNAVAILABLE,
            503: ErrorCode.SERVICE_UNAVAILABLE,
        }
        return mapping.get(status_code, ErrorCode.INTERNAL_ERROR)

    def _get_http_error_suggestion(self, status_code: int) -> str:
        """Get user-friendly suggestions for HTTP errors."""
        suggestions = {
            400: "Please check your request and try again",
            401: "Authentication required",
            403: "Access to this resource is forbidden",
            404: "The requested resource was not found",
            405: "This method is not allowed for the resource",
            429: "Too many requests. Please wait before trying again",
            500: "An internal server error occurred. Please try again later",
            502: "Service temporarily unavailable. Please try again later",
            503: "Service temporarily unavailable. Please try again later",
        }
        return suggestions.get(
            status_code,
            "An error occurred. Please try again or contact support"
        )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Route errors FastAPI handles itself through the middleware's formatting.

    Routing and body validation errors are turned into responses before
    they reach any middleware, so they are rendered by exception handlers.
    """
    formatter = ErrorHandlingMiddleware(app)

    async def app_exception_handler(request: Request, exc: MediaRelayException):
        return formatter._handle_app_exception(request, exc, _start_time(request))

    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return formatter._handle_http_exception(request, exc, _start_time(request))

    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return formatter._handle_validation_exception(request, exc, _start_time(request))

    app.add_exception_handler(MediaRelayException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


def _start_time(request: Request) -> float:
    return getattr(request.state, "start_time", time.time())
