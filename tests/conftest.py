"""Shared fixtures: test settings, scripted upstreams, and app clients."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable

import httpx
import pytest
from fastapi.testclient import TestClient

from chatrelay.config import Settings
from chatrelay.main import create_app
from chatrelay.providers import ProviderRegistry


class ChunkStream(httpx.AsyncByteStream):
    """Response body that yields pre-split chunks, optionally pausing or failing."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        *,
        gate_after: int | None = None,
        error: Exception | None = None,
    ):
        self.chunks = list(chunks)
        self.gate_after = gate_after
        self.error = error
        self.gate = asyncio.Event()
        self.delivered = 0
        self.waiting = False
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if index == self.gate_after:
                self.waiting = True
                await self.gate.wait()
                self.waiting = False
            self.delivered += 1
            yield chunk
        if self.gate_after is not None and self.gate_after >= len(self.chunks):
            self.waiting = True
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """Scripted provider endpoint that records every request it receives."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        status_code: int = 200,
        body: bytes | None = None,
        exc: Exception | None = None,
        gate_after: int | None = None,
        error: Exception | None = None,
    ):
        self.chunks = list(chunks)
        self.status_code = status_code
        self.body = body
        self.exc = exc
        self.gate_after = gate_after
        self.error = error
        self.calls: list[httpx.Request] = []
        self.streams: list[ChunkStream] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.exc is not None:
            raise self.exc
        if self.body is not None:
            return httpx.Response(self.status_code, content=self.body)
        stream = ChunkStream(self.chunks, gate_after=self.gate_after, error=self.error)
        self.streams.append(stream)
        return httpx.Response(
            self.status_code,
            headers={"content-type": "text/event-stream"},
            stream=stream,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def stream(self) -> ChunkStream:
        return self.streams[-1]


def delta_record(text: str) -> bytes:
    """Encode one OpenAI-style streaming delta as an SSE record."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'data: {{"choices":[{{"delta":{{"content":"{escaped}"}}}}]}}\n\n'.encode()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="development",
        secret_key="test-secret-key",
        cookie_secure=False,
        openrouter_api_key="or-test-key",
        groq_api_key="groq-test-key",
        provider_timeout_seconds=5,
        sse_ping_interval_seconds=0,
    )


@pytest.fixture
def make_upstream() -> type[FakeUpstream]:
    return FakeUpstream


@pytest.fixture
def sse_delta() -> Callable[[str], bytes]:
    return delta_record


@pytest.fixture
def make_registry(settings: Settings):
    def _make(
        upstreams: dict[str, FakeUpstream] | None = None,
        app_settings: Settings | None = None,
    ) -> ProviderRegistry:
        return ProviderRegistry(
            app_settings or settings,
            transport_overrides={
                provider_id: upstream.transport
                for provider_id, upstream in (upstreams or {}).items()
            },
        )

    return _make


@pytest.fixture
def make_client(settings: Settings, make_registry):
    clients: list[TestClient] = []

    def _make(upstreams: dict[str, FakeUpstream] | None = None, **overrides) -> TestClient:
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        app = create_app(app_settings)
        app.state.provider_registry = make_registry(upstreams, app_settings)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)
