"""
Base provider interface.

Defines the contract that every upstream adapter implements:
``build_request`` -> ``open_stream`` -> ``parse_frame``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from chatrelay.config import Settings
from chatrelay.streaming.cancel import CancelToken
from chatrelay.streaming.events import ParsedRecord
from chatrelay.streaming.sse import SSEParser


class Role(str, Enum):
    """Internal role vocabulary."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class AttachmentRef:
    """Reference to a file attached to a message (not forwarded upstream)."""

    name: str
    content_type: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    """A single chat message."""

    role: Role
    content: str
    attachments: tuple[AttachmentRef, ...] = ()


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of a provider and the models it serves, in display order."""

    id: str
    display_name: str
    models: tuple[str, ...]

    def supports(self, model: str) -> bool:
        return model in self.models


@dataclass
class UpstreamRequest:
    """Provider-specific HTTP request for one relay call."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any] = field(default_factory=dict)


class UpstreamStream:
    """
    An open, successful upstream response.

    ``first_chunk`` was already read to prove the body is non-empty; it is
    replayed ahead of the remaining ``chunks``.
    """

    def __init__(
        self,
        response: httpx.Response,
        first_chunk: bytes = b"",
        chunks: AsyncIterator[bytes] | None = None,
    ):
        self.response = response
        self.first_chunk = first_chunk
        self._chunks = chunks

    @property
    def status_code(self) -> int:
        return self.response.status_code

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        if self.first_chunk:
            yield self.first_chunk
        chunks = self._chunks if self._chunks is not None else self.response.aiter_bytes()
        async for chunk in chunks:
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()


DEFAULT_ROLE_MAP: dict[Role, str] = {
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
    Role.SYSTEM: "system",
}


class Provider(ABC):
    """
    Abstract base class for upstream chat-completion adapters.

    Instances are created once by the registry and shared by concurrent
    relays; they hold no per-request state. Per-request framing state
    lives in the ``SSEParser`` returned by ``new_parser``.
    """

    role_map: dict[Role, str] = DEFAULT_ROLE_MAP

    def __init__(self, descriptor: ProviderDescriptor, settings: Settings):
        self.descriptor = descriptor
        self.settings = settings

    @property
    def provider_id(self) -> str:
        return self.descriptor.id

    @property
    def display_name(self) -> str:
        return self.descriptor.display_name

    async def aclose(self) -> None:
        """Close any underlying resources (optional)."""
        return None

    @property
    def has_credentials(self) -> bool:
        """Whether the API key this adapter needs is configured."""
        return True

    def map_role(self, role: Role) -> str:
        return self.role_map[role]

    @abstractmethod
    def build_request(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        max_tokens: int | None = None,
    ) -> UpstreamRequest:
        """
        Build the upstream request for a conversation.

        Raises:
            MissingCredentialsError: If the provider's API key is not configured.
        """
        ...

    @abstractmethod
    async def open_stream(
        self,
        request: UpstreamRequest,
        cancel: CancelToken | None = None,
    ) -> UpstreamStream:
        """
        Issue the upstream call and return the open byte stream.

        Raises:
            UpstreamError: On non-2xx responses, empty bodies, or transport failure.
            StreamCancelledError: If ``cancel`` fires before the response arrives.
        """
        ...

    def new_parser(self) -> SSEParser:
        """Fresh framing state for one upstream stream."""
        return SSEParser()

    @abstractmethod
    def parse_frame(self, parser: SSEParser, chunk: bytes) -> list[ParsedRecord]:
        """Feed a raw transport chunk; return the records it completes."""
        ...

    @abstractmethod
    def finish(self, parser: SSEParser) -> list[ParsedRecord]:
        """Return records still pending when the transport closes."""
        ...
