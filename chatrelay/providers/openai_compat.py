"""OpenAI-style chat-completions adapter shared by the hosted providers."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import httpx

from chatrelay.config import Settings
from chatrelay.core import ErrorCode, MissingCredentialsError, get_logger
from chatrelay.providers.base import (
    ChatMessage,
    Provider,
    ProviderDescriptor,
    UpstreamRequest,
    UpstreamStream,
)
from chatrelay.providers.http_client import create_http_client, open_streaming_post
from chatrelay.streaming.cancel import CancelToken
from chatrelay.streaming.events import Delta, Done, Error, FrameError, ParsedRecord
from chatrelay.streaming.sse import SSEEvent, SSEParser

logger = get_logger(__name__)

DONE_MARKER = "[DONE]"


def extract_record(payload: Any) -> ParsedRecord | None:
    """
    Map one decoded ``data:`` payload onto the normalized vocabulary.

    Recognized shapes, in order: an in-band ``error`` object (OpenRouter
    sends it alongside ``choices`` when a stream fails midway),
    ``choices[0]`` with ``finish_reason == "error"``,
    ``choices[0].delta.content``, a top-level ``content`` string.
    Anything else returns None and is dropped.
    """
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            message = str(error.get("message") or "Upstream error")
        else:
            message = str(error)
        return Error(message, ErrorCode.UPSTREAM_ERROR.value)

    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if not isinstance(first, dict):
            return None
        if first.get("finish_reason") == "error":
            return Error("Upstream error", ErrorCode.UPSTREAM_ERROR.value)
        delta = first.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return Delta(delta["content"])
        return None

    content = payload.get("content")
    if isinstance(content, str):
        return Delta(content)
    return None


class OpenAICompatProvider(Provider):
    """Adapter for ``POST {base_url}/chat/completions`` with ``stream: true``."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        settings: Settings,
        *,
        base_url: str,
        api_key: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(descriptor, settings)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or None
        self.client = create_http_client(
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def has_credentials(self) -> bool:
        return self.api_key is not None

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def vendor_headers(self) -> dict[str, str]:
        """Extra headers a vendor requires besides Authorization."""
        return {}

    def format_messages(self, messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
        return [
            {"role": self.map_role(message.role), "content": message.content}
            for message in messages
        ]

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        max_tokens: int | None = None,
    ) -> UpstreamRequest:
        if not self.api_key:
            raise MissingCredentialsError(self.provider_id)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        headers.update(self.vendor_headers())
        body: dict[str, Any] = {
            "model": model,
            "messages": self.format_messages(messages),
            "stream": True,
            "max_tokens": max_tokens or self.settings.default_max_tokens,
            "temperature": self.settings.default_temperature,
        }
        return UpstreamRequest(url=self.endpoint_url, headers=headers, body=body)

    async def open_stream(
        self,
        request: UpstreamRequest,
        cancel: CancelToken | None = None,
    ) -> UpstreamStream:
        logger.info(
            f"Sending request to {self.display_name}",
            data=_summarize_request(request.body),
        )
        stream = await open_streaming_post(
            self.client,
            request.url,
            headers=request.headers,
            json_body=request.body,
            provider_id=self.provider_id,
            display_name=self.display_name,
            cancel=cancel,
        )
        logger.info(
            f"{self.display_name} response received, starting stream",
            data={"status": stream.status_code},
        )
        return stream

    def parse_frame(self, parser: SSEParser, chunk: bytes) -> list[ParsedRecord]:
        return self._records(parser.feed(chunk))

    def finish(self, parser: SSEParser) -> list[ParsedRecord]:
        return self._records(parser.flush())

    def _records(self, events: list[SSEEvent]) -> list[ParsedRecord]:
        records: list[ParsedRecord] = []
        for event in events:
            record = self.parse_event(event)
            if record is not None:
                records.append(record)
        return records

    def parse_event(self, event: SSEEvent) -> ParsedRecord | None:
        data = event.data.strip()
        if not data:
            return None
        if data == DONE_MARKER:
            return Done()
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            return FrameError(raw=data, reason=f"invalid JSON: {exc.msg}")
        if event.event == "error" and isinstance(payload, dict):
            payload.setdefault("error", payload.get("message") or "Upstream error")
        return extract_record(payload)


def _summarize_request(body: dict[str, Any]) -> dict[str, Any]:
    """Loggable request summary: shape only, never content or credentials."""
    summary: dict[str, Any] = {
        "model": body.get("model"),
        "stream": body.get("stream"),
        "max_tokens": body.get("max_tokens"),
    }
    messages = body.get("messages") or []
    summary["messages_count"] = len(messages)
    roles: list[str] = []
    total_chars = 0
    for msg in messages:
        role = msg.get("role")
        if role and role not in roles:
            roles.append(role)
        total_chars += len(msg.get("content") or "")
    summary["roles"] = roles
    summary["total_chars"] = total_chars
    return summary
