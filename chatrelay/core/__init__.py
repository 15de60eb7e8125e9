"""Core module with logging, errors, metrics, and middleware."""

from chatrelay.core.errors import (
    AppError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    InvalidInputError,
    InvalidModelError,
    MissingCredentialsError,
    NotFoundError,
    PayloadTooLargeError,
    UnauthorizedError,
    UnknownProviderError,
    UpstreamError,
)
from chatrelay.core.logging import (
    bind_stream,
    get_logger,
    redact,
    request_id_ctx,
    setup_logging,
    stream_id_ctx,
)
from chatrelay.core.metrics import metrics

__all__ = [
    "AppError",
    "ErrorCode",
    "ErrorResponse",
    "ForbiddenError",
    "InvalidInputError",
    "InvalidModelError",
    "MissingCredentialsError",
    "NotFoundError",
    "PayloadTooLargeError",
    "UnauthorizedError",
    "UnknownProviderError",
    "UpstreamError",
    "bind_stream",
    "get_logger",
    "metrics",
    "redact",
    "request_id_ctx",
    "setup_logging",
    "stream_id_ctx",
]
