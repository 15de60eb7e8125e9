"""
Reference consumer for the relay's normalized event stream.

Reads ``POST /api/chat`` incrementally, skips comment records, accumulates
deltas, and hands the finished text to an ``on_complete(content, role)``
callback shaped like the persistence collaborator's ``add_message``.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

import httpx

from chatrelay.core import get_logger
from chatrelay.streaming.sse import SSEEvent, SSEParser

logger = get_logger(__name__)

DONE_MARKER = "[DONE]"

CompletionCallback = Callable[[str, str], Awaitable[Any] | Any]


class RelayClientError(Exception):
    """The relay rejected the call or ended the stream with an error."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class IncompleteStreamError(RelayClientError):
    """The connection closed before a terminal record arrived."""


class RelayClient:
    """Async client for the relay endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        session_token: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "text/event-stream"}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self.last_stream_id: str | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def stream_chat(
        self,
        messages: Sequence[dict[str, str]],
        *,
        provider: str,
        model: str,
        guest: bool = False,
        max_tokens: int | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> AsyncIterator[str]:
        """
        Yield text deltas in arrival order.

        Raises:
            RelayClientError: On a non-2xx response or an in-band error record.
            IncompleteStreamError: If the stream closes without ``[DONE]``.
        """
        body: dict[str, Any] = {
            "messages": list(messages),
            "provider": provider,
            "model": model,
        }
        if guest:
            body["isGuestRequest"] = True
        if max_tokens is not None:
            body["maxTokens"] = max_tokens

        parts: list[str] = []
        async with self._client.stream("POST", "/api/chat", json=body) as response:
            if not response.is_success:
                await response.aread()
                raise _error_from_response(response)

            self.last_stream_id = response.headers.get("X-Stream-ID")
            finished = False
            async for event in _iter_events(response):
                text = self._handle(event)
                if text is None:
                    finished = True
                    break
                if text:
                    parts.append(text)
                    yield text

        if not finished:
            raise IncompleteStreamError("Stream closed before completion")

        if on_complete is not None:
            result = on_complete("".join(parts), "assistant")
            if inspect.isawaitable(result):
                await result

    async def complete(
        self,
        messages: Sequence[dict[str, str]],
        *,
        provider: str,
        model: str,
        guest: bool = False,
        max_tokens: int | None = None,
    ) -> str:
        """Run a relay call to completion and return the full text."""
        parts = [
            text
            async for text in self.stream_chat(
                messages, provider=provider, model=model, guest=guest, max_tokens=max_tokens
            )
        ]
        return "".join(parts)

    async def cancel(self, stream_id: str) -> bool:
        """Ask the relay to stop a running stream. Returns False if it was not found."""
        response = await self._client.post("/api/chat/cancel", json={"streamId": stream_id})
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise _error_from_response(response)
        return True

    def _handle(self, event: SSEEvent) -> str | None:
        """Return delta text, or None for the end marker."""
        if event.data == DONE_MARKER:
            return None
        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable relay record", data={"data": event.data[:200]})
            return ""
        if event.event == "error" or (isinstance(payload, dict) and "error" in payload):
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                raise RelayClientError(str(error.get("message") or "Stream error"), error.get("code"))
            raise RelayClientError(str(error or "Stream error"))
        if isinstance(payload, dict) and isinstance(payload.get("content"), str):
            return payload["content"]
        return ""


def _error_from_response(response: httpx.Response) -> RelayClientError:
    try:
        error = response.json().get("error") or {}
    except (json.JSONDecodeError, AttributeError):
        error = {}
    message = error.get("message") or f"Relay request failed: {response.status_code}"
    return RelayClientError(message, error.get("code"), response.status_code)


async def _iter_events(response: httpx.Response) -> AsyncIterator[SSEEvent]:
    parser = SSEParser()
    async for chunk in response.aiter_bytes():
        for event in parser.feed(chunk):
            yield event
    for event in parser.flush():
        yield event
