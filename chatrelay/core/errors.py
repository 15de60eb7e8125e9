"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    INVALID_INPUT = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    REQUEST_TOO_LARGE = "E1004"
    PAYLOAD_TOO_LARGE = "E1006"

    # Authentication errors (2xxx)
    UNAUTHORIZED = "E2000"
    FORBIDDEN = "E3000"

    # Provider errors (4xxx)
    UNKNOWN_PROVIDER = "E4000"
    INVALID_MODEL = "E4002"
    STREAMING_ERROR = "E4003"
    UPSTREAM_ERROR = "E4004"
    MISSING_CREDENTIALS = "E4005"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


class InvalidInputError(AppError):
    """Malformed or empty request input (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.INVALID_INPUT, message, 400, details)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(ErrorCode.NOT_FOUND, message, 404)


class UnauthorizedError(AppError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class ForbiddenError(AppError):
    """Access denied (403)."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class UnknownProviderError(AppError):
    """Requested provider is not registered (400)."""

    def __init__(self, provider_id: str):
        super().__init__(
            ErrorCode.UNKNOWN_PROVIDER,
            f"Invalid provider: {provider_id}",
            400,
            {"provider": provider_id},
        )


class InvalidModelError(AppError):
    """Requested model does not belong to the provider (400)."""

    def __init__(self, provider_id: str, model: str):
        super().__init__(
            ErrorCode.INVALID_MODEL,
            f"Invalid model for provider {provider_id}: {model}",
            400,
            {"provider": provider_id, "model": model},
        )


class PayloadTooLargeError(AppError):
    """Guest conversation exceeds the content budget (400)."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            ErrorCode.PAYLOAD_TOO_LARGE,
            "Conversation exceeds the guest content limit",
            400,
            {"size_bytes": size, "limit_bytes": limit},
        )


class MissingCredentialsError(AppError):
    """Upstream API key is not configured (500)."""

    def __init__(self, provider_id: str):
        super().__init__(
            ErrorCode.MISSING_CREDENTIALS,
            f"API key for provider {provider_id} is not configured",
            500,
            {"provider": provider_id},
        )


class UpstreamError(AppError):
    """
    Upstream provider failure.

    The HTTP status of the relay response is derived from the upstream
    status: rate limits and timeouts pass through, everything else is 502.
    """

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        body: str | None = None,
        provider_id: str | None = None,
    ):
        self.upstream_status = upstream_status
        self.body = body
        details: dict[str, Any] = {}
        if provider_id:
            details["provider"] = provider_id
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        if body:
            details["body"] = body
        super().__init__(
            ErrorCode.UPSTREAM_ERROR,
            message,
            _relay_status(upstream_status),
            details or None,
        )


def _relay_status(upstream_status: int | None) -> int:
    if upstream_status in (429, 504):
        return upstream_status
    return 502
