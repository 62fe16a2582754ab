"""Error handling middleware for consistent JSON error responses.

Every error leaves the API in one envelope:
- error: machine-readable code
- message: human-readable description
- detail: optional extra information
- request_id: correlation id, when known

Identity failures (bad credentials, unknown or expired sessions) are raised
with generic messages; only caller-integration mistakes carry specifics.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from regportal.api.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: Any = None,
    ) -> None:
        """Initialize API error.

        Args:
            error: Machine-readable error code (e.g., "validation_error").
            message: Human-readable error description.
            status_code: HTTP status code to return.
            detail: Optional additional details.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, identifier: str, detail: Any = None) -> None:
        super().__init__(
            error="not_found",
            message=f"{resource} not found: {identifier}",
            status_code=404,
            detail=detail,
        )


class ValidationAPIError(APIError):
    """Malformed request payload (400)."""

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(
            error="validation_error",
            message=message,
            status_code=400,
            detail=detail,
        )


class AuthorizationError(APIError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Insufficient permissions", detail: Any = None) -> None:
        super().__init__(
            error="forbidden",
            message=message,
            status_code=403,
            detail=detail,
        )


class AuthenticationError(APIError):
    """Missing, unknown, expired or revoked credentials (401)."""

    def __init__(self, message: str = "Authentication required", detail: Any = None) -> None:
        super().__init__(
            error="unauthorized",
            message=message,
            status_code=401,
            detail=detail,
        )


class UpstreamError(APIError):
    """The external authentication service failed (502) or timed out (504)."""

    def __init__(
        self, message: str = "Authentication service unavailable", *, timeout: bool = False
    ) -> None:
        super().__init__(
            error="upstream_timeout" if timeout else "upstream_unavailable",
            message=message,
            status_code=504 if timeout else 502,
        )


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: Any = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch exceptions raised by handlers and return JSON errors.

    Handles:
    - APIError and subclasses
    - HTTPException raised outside FastAPI's own handlers
    - pydantic ValidationError raised while building responses
    - Anything else: logged with the stack trace, returned as a generic 500
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except APIError as exc:
            if exc.status_code >= 500:
                logger.warning(
                    "%s %s failed: %s (%s)",
                    request.method,
                    request.url.path,
                    exc.error,
                    exc.message,
                )
            return build_error_response(
                error=exc.error,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.detail,
            )
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except ValidationError as exc:
            return build_error_response(
                error="validation_error",
                message="Request validation failed",
                status_code=422,
                detail={"errors": exc.errors(include_url=False)},
            )
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
