"""
Request middleware and exception handlers for the relay.

Streaming responses return from ``call_next`` as soon as their headers are
ready, so the access log for ``text/event-stream`` records time to headers
only; the relay session logs the stream's real duration when it closes.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.errors import AppError, ErrorCode, ErrorResponse
from chatrelay.core.logging import get_logger, request_id_ctx, stream_id_ctx

logger = get_logger(__name__)

EVENT_STREAM = "text/event-stream"


def error_json(status_code: int, error: ErrorResponse) -> JSONResponse:
    """Render an error envelope, echoing the request id header when known."""
    headers = {"X-Request-ID": error.request_id} if error.request_id else {}
    return JSONResponse(status_code=status_code, content=error.to_dict(), headers=headers)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the request id for logging and echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_token = request_id_ctx.set(request_id)
        stream_id_token = stream_id_ctx.set(None)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
            data = {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
            }
            if response.headers.get("content-type", "").startswith(EVENT_STREAM):
                data["stream_id"] = response.headers.get("X-Stream-ID")
                data["time_to_headers_ms"] = elapsed_ms
                logger.info("Stream response started", data=data)
            else:
                data["duration_ms"] = elapsed_ms
                logger.info("Request completed", data=data)
            return response
        finally:
            request_id_ctx.reset(request_id_token)
            stream_id_ctx.reset(stream_id_token)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared length exceeds ``max_bytes`` (413)."""

    def __init__(self, app: FastAPI, max_bytes: int = 1048576):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            logger.warning(
                "Request too large",
                data={"content_length": int(content_length), "max_bytes": self.max_bytes},
            )
            return error_json(
                413,
                ErrorResponse(
                    code=ErrorCode.REQUEST_TOO_LARGE,
                    message=f"Request body exceeds {self.max_bytes} bytes",
                    request_id=request_id_ctx.get(),
                ),
            )
        return await call_next(request)


# Routing failures; everything the relay rejects itself arrives as an AppError.
HTTP_ERROR_CODES = {
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
}


def setup_exception_handlers(app: FastAPI) -> None:
    """Map every failure onto the ``{error: {...}}`` envelope."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Malformed relay bodies are invalid input (400), not FastAPI's 422.
        details = {
            "errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                for err in exc.errors()
            ]
        }
        return error_json(
            400,
            ErrorResponse(
                code=ErrorCode.INVALID_INPUT,
                message="Invalid request body",
                request_id=request_id_ctx.get(),
                details=details,
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        fallback = ErrorCode.INVALID_INPUT if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR
        return error_json(
            exc.status_code,
            ErrorResponse(
                code=HTTP_ERROR_CODES.get(exc.status_code, fallback),
                message=str(exc.detail) if exc.detail else "HTTP error",
                request_id=request_id_ctx.get(),
            ),
        )

    @app.exception_handler(AppError)
    async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        logger.warning(
            f"Relay request rejected: {exc.message}",
            data={"code": exc.code.value, "status": exc.status_code, "details": exc.details},
        )
        return error_json(exc.status_code, exc.to_response(request_id=request_id_ctx.get()))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unexpected failures never expose internals to the caller."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            data={"path": request.url.path, "method": request.method},
        )
        return error_json(
            500,
            ErrorResponse(
                code=ErrorCode.INTERNAL_ERROR,
                message="An unexpected error occurred",
                request_id=request_id_ctx.get(),
            ),
        )
