"""Centralized exception hierarchy and handlers for the application.

This module provides a unified exception system that maps all application errors
to appropriate HTTP status codes and response formats. All services and routes
should raise exceptions from this hierarchy rather than generic exceptions or
HTTPException directly.

Exception Hierarchy:
    AppException (base)
    ├── ValidationError (400)
    ├── AuthenticationError (401)
    │   ├── WrongCredentialsError (401)
    │   └── SessionInvalidError (401)
    ├── ProviderNotAuthorizedError (403)
    ├── NotFoundError (404)
    ├── ConflictError (409)
    │   ├── IssuerNotFoundError (409)
    │   └── InteractionRequiredError (409)
    ├── InternalError (500)
    ├── UnimplementedError (501)
    ├── ExternalAPIError (503)
    └── DeadlineExceededError (504)

Usage in Services:
    from app.core.exceptions import InternalError, SessionInvalidError

    async def list_accounts(key: str) -> list[BankAccount]:
        payload = await client.request(...)
        if payload.get("message") == "Invalid key":
            raise SessionInvalidError()
        ...

Anything that is not an AppException is caught by
``unhandled_exception_handler`` and returned as an opaque 500, so raw upstream
payloads and stack traces never reach the caller.
"""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """
    Base exception class for all application errors.

    Provides standard structure for application exceptions that can be
    automatically converted to HTTP responses with appropriate status codes.

    Attributes:
        status_code: HTTP status code for this error type
        detail: User-facing error message
        error_code: Machine-readable error code (optional)
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Internal server error"
    error_code: str | None = None

    def __init__(
        self,
        detail: str | None = None,
        *,
        error_code: str | None = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            detail: Custom error message (overrides class default)
            error_code: Machine-readable error identifier
        """
        self.detail = detail or self.__class__.detail
        self.error_code = error_code or self.__class__.error_code
        super().__init__(self.detail)


class ValidationError(AppException):
    """
    Raised when input validation fails.

    Used for bad directory names, unknown providers, malformed credentials,
    currencies or dates. Always raised before any network or storage call.
    Maps to HTTP 400 Bad Request.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Validation error"
    error_code = "VALIDATION_ERROR"


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    Used for invalid credentials, expired tokens, or missing authentication.
    Maps to HTTP 401 Unauthorized.
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Authentication failed"
    error_code = "AUTHENTICATION_ERROR"


class WrongCredentialsError(AuthenticationError):
    """Raised when the banking provider rejects the stored credentials."""

    detail = "wrong credentials for the banking provider"
    error_code = "WRONG_CREDENTIALS"


class SessionInvalidError(AuthenticationError):
    """Raised when the upstream session key is invalid or expired.

    Callers can catch this one to trigger a fresh login.
    """

    detail = "banking session key is invalid or has expired"
    error_code = "SESSION_INVALID"


class ProviderNotAuthorizedError(AppException):
    """Raised when the upstream API refuses the provider for our API key."""

    status_code = status.HTTP_403_FORBIDDEN
    detail = "provider is not authorized"
    error_code = "PROVIDER_NOT_AUTHORIZED"


class NotFoundError(AppException):
    """
    Raised when a requested resource is not found.

    Used for directories that do not exist or belong to another user, and
    for unknown upstream clients.
    Maps to HTTP 404 Not Found.
    """

    status_code = status.HTTP_404_NOT_FOUND
    detail = "Resource not found"
    error_code = "NOT_FOUND"


class ConflictError(AppException):
    """
    Raised when there's a conflict in the operation.

    Used for duplicate entries or state conflicts.
    Maps to HTTP 409 Conflict.
    """

    status_code = status.HTTP_409_CONFLICT
    detail = "Resource conflict"
    error_code = "CONFLICT"


class IssuerNotFoundError(ConflictError):
    """Raised when the user issuing a request does not exist in the system."""

    detail = "issuer not found in the system"
    error_code = "ISSUER_NOT_FOUND"


class InteractionRequiredError(ConflictError):
    """Raised when a login needs further interaction (OTP, client selection).

    Attributes:
        requires: The pending requirement reported by the login
    """

    detail = "additional interaction is required to open a banking session"
    error_code = "INTERACTION_REQUIRED"

    def __init__(self, requires: str, detail: str | None = None) -> None:
        self.requires = requires
        super().__init__(detail or f"{self.__class__.detail}: {requires}")


class InternalError(AppException):
    """Opaque failure; details are logged server-side only."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "something went wrong"
    error_code = "INTERNAL_ERROR"


class UnimplementedError(AppException):
    """Raised for upstream flows that are deliberately not supported."""

    status_code = status.HTTP_501_NOT_IMPLEMENTED
    detail = "not implemented"
    error_code = "UNIMPLEMENTED"


class ExternalAPIError(AppException):
    """
    Raised when an external API call fails.

    Used when the banking aggregation API is unreachable.
    Maps to HTTP 503 Service Unavailable.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "External service unavailable"
    error_code = "EXTERNAL_API_ERROR"


class DeadlineExceededError(AppException):
    """Raised when the retry budget against the upstream API is exhausted."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    detail = "deadline exceeded while contacting the banking provider"
    error_code = "DEADLINE_EXCEEDED"


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """
    Handle application exceptions and convert to HTTP responses.

    Args:
        request: FastAPI request object
        exc: The exception instance

    Returns:
        JSONResponse with error details and HTTP status code

    Response Format:
        {
            "detail": "User-facing error message",
            "error_code": "MACHINE_READABLE_CODE"  # optional
        }
    """
    extra = {
        "status_code": exc.status_code,
        "error_code": exc.error_code,
        "request_path": request.url.path,
    }
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.detail}", exc_info=True, extra=extra)
    else:
        logger.warning(f"{exc.__class__.__name__}: {exc.detail}", extra=extra)

    response_body: dict[str, Any] = {"detail": exc.detail}
    if exc.error_code:
        response_body["error_code"] = exc.error_code

    return JSONResponse(
        status_code=exc.status_code,
        content=response_body,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log any unclassified exception and hide it behind an opaque 500."""
    logger.error(
        f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=InternalError.status_code,
        content={"detail": InternalError.detail, "error_code": InternalError.error_code},
    )
