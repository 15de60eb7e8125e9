"""
Shared HTTP client helpers for provider adapters.

Provides consistent timeouts and error mapping so adapters raise stable
``UpstreamError`` instances without leaking stack traces. A relay makes a
single upstream attempt; there are no retries here.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from chatrelay.core import UpstreamError, get_logger, metrics, request_id_ctx
from chatrelay.providers.base import UpstreamStream
from chatrelay.streaming.cancel import CancelToken

logger = get_logger(__name__)

MAX_ERROR_BODY_CHARS = 2000


def create_http_client(
    timeout_seconds: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        timeout_seconds: Connect/read/write timeout for requests.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(
        timeout_seconds, connect=timeout_seconds, read=timeout_seconds, write=timeout_seconds
    )
    return httpx.AsyncClient(timeout=timeout, transport=transport)


async def open_streaming_post(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    json_body: dict[str, Any],
    provider_id: str,
    display_name: str,
    cancel: CancelToken | None = None,
) -> UpstreamStream:
    """
    POST ``json_body`` and return the open stream.

    Non-2xx responses are read fully for diagnostics and raised as
    ``UpstreamError``. The first body chunk is read before returning so a
    2xx without a body is raised here too, while the relay can still answer
    with an HTTP error.
    """
    headers = dict(headers)
    request_id = request_id_ctx.get()
    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id

    request = client.build_request("POST", url, headers=headers, json=json_body)
    send = client.send(request, stream=True)
    try:
        if cancel is not None:
            response = await cancel.race(send)
        else:
            response = await send
    except httpx.TimeoutException as exc:
        metrics.increment("upstream_errors_total", provider=provider_id, kind="timeout")
        raise UpstreamError(
            f"{display_name} request timed out",
            upstream_status=504,
            provider_id=provider_id,
        ) from exc
    except httpx.HTTPError as exc:
        metrics.increment("upstream_errors_total", provider=provider_id, kind="unreachable")
        logger.warning(
            "Upstream request failed",
            data={"provider": provider_id, "error": str(exc)},
        )
        raise UpstreamError(
            f"{display_name} is unreachable",
            provider_id=provider_id,
        ) from exc

    if not response.is_success:
        body = await _read_error_body(response)
        metrics.increment("upstream_errors_total", provider=provider_id, kind="http_status")
        logger.warning(
            "Provider HTTP error",
            data={
                "provider": provider_id,
                "status_code": response.status_code,
                "url": str(response.request.url),
                "body": body,
            },
        )
        raise UpstreamError(
            f"{display_name} error: {response.status_code} {response.reason_phrase}",
            upstream_status=response.status_code,
            body=body,
            provider_id=provider_id,
        )

    first_chunk: bytes | None = None
    chunks = response.aiter_bytes()
    if response.status_code != 204 and response.headers.get("content-length") != "0":
        try:
            first_chunk = await _first_chunk(chunks, cancel)
        except httpx.TimeoutException as exc:
            await response.aclose()
            metrics.increment("upstream_errors_total", provider=provider_id, kind="timeout")
            raise UpstreamError(
                f"{display_name} request timed out",
                upstream_status=504,
                provider_id=provider_id,
            ) from exc
        except httpx.HTTPError as exc:
            await response.aclose()
            metrics.increment("upstream_errors_total", provider=provider_id, kind="closed")
            raise UpstreamError(
                f"{display_name} closed the connection",
                provider_id=provider_id,
            ) from exc
        except BaseException:
            await response.aclose()
            raise

    if first_chunk is None:
        await response.aclose()
        metrics.increment("upstream_errors_total", provider=provider_id, kind="empty_body")
        raise UpstreamError(
            f"No response body from {display_name}",
            upstream_status=response.status_code,
            body="empty body",
            provider_id=provider_id,
        )

    return UpstreamStream(response, first_chunk, chunks)


async def _first_chunk(
    chunks: AsyncIterator[bytes], cancel: CancelToken | None
) -> bytes | None:
    """First non-empty body chunk, or None if the body is empty."""

    async def read() -> bytes | None:
        async for chunk in chunks:
            if chunk:
                return chunk
        return None

    if cancel is not None:
        return await cancel.race(read())
    return await read()


async def _read_error_body(response: httpx.Response) -> str:
    """Read a failed response fully and return a bounded text snippet."""
    try:
        await response.aread()
        text = response.text
    except httpx.HTTPError as exc:
        text = f"<unreadable body: {exc}>"
    finally:
        await response.aclose()
    if len(text) > MAX_ERROR_BODY_CHARS:
        text = f"{text[:MAX_ERROR_BODY_CHARS]}...(truncated)"
    return text
