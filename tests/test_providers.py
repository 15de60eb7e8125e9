"""Tests for provider registry and adapters."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.config import Settings
from chatrelay.core import (
    ErrorCode,
    InvalidModelError,
    MissingCredentialsError,
    UnknownProviderError,
    UpstreamError,
    metrics,
)
from chatrelay.providers import PROVIDER_TABLE, ChatMessage, ProviderRegistry, Role
from chatrelay.providers.openai_compat import extract_record
from chatrelay.streaming import CancelToken, Delta, Done, Error, FrameError, StreamCancelledError
from chatrelay.streaming.sse import SSEEvent

CONVERSATION = [
    ChatMessage(Role.SYSTEM, "Be brief."),
    ChatMessage(Role.USER, "hi"),
    ChatMessage(Role.ASSISTANT, "Hello!"),
    ChatMessage(Role.USER, "how are you?"),
]


def test_registry_loads_enabled_providers(settings: Settings) -> None:
    """Registry instantiates enabled providers from the fixed table."""
    registry = ProviderRegistry(settings)

    assert [d.id for d in registry.descriptors()] == ["openrouter", "groq"]
    assert registry.resolve("groq").descriptor.display_name == "Groq"


def test_registry_skips_unknown_and_disabled_ids(settings: Settings) -> None:
    registry = ProviderRegistry(settings.model_copy(update={"providers_enabled": "groq, bogus"}))

    assert [d.id for d in registry.descriptors()] == ["groq"]
    with pytest.raises(UnknownProviderError) as exc:
        registry.resolve("openrouter")
    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid provider: openrouter"


def test_validate_model_over_all_pairs(settings: Settings) -> None:
    """Every registered pair validates; every cross pair fails with InvalidModel."""
    registry = ProviderRegistry(settings)
    all_models = {model for entry in PROVIDER_TABLE.values() for model in entry.models}

    for provider_id, entry in PROVIDER_TABLE.items():
        for model in sorted(all_models | {"not-a-model"}):
            if model in entry.models:
                registry.validate_model(provider_id, model)
            else:
                with pytest.raises(InvalidModelError) as exc:
                    registry.validate_model(provider_id, model)
                assert exc.value.code == ErrorCode.INVALID_MODEL
                assert exc.value.details == {"provider": provider_id, "model": model}


def test_validate_model_unknown_provider(settings: Settings) -> None:
    registry = ProviderRegistry(settings)

    with pytest.raises(UnknownProviderError):
        registry.validate_model("unknown", "llama3-8b-8192")


def test_openrouter_build_request(settings: Settings) -> None:
    adapter = ProviderRegistry(settings).resolve("openrouter").adapter

    request = adapter.build_request(CONVERSATION, "meta-llama/llama-4-scout:free")

    assert request.url == "https://openrouter.ai/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer or-test-key"
    assert request.headers["Accept"] == "text/event-stream"
    assert request.headers["HTTP-Referer"] == settings.openrouter_referer
    assert request.headers["X-Title"] == settings.openrouter_title
    assert request.body == {
        "model": "meta-llama/llama-4-scout:free",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "how are you?"},
        ],
        "stream": True,
        "max_tokens": 1000,
        "temperature": 0.7,
    }


def test_groq_build_request_honours_max_tokens(settings: Settings) -> None:
    adapter = ProviderRegistry(settings).resolve("groq").adapter

    request = adapter.build_request(CONVERSATION[1:2], "llama3-8b-8192", max_tokens=64)

    assert request.url == "https://api.groq.com/openai/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer groq-test-key"
    assert "HTTP-Referer" not in request.headers
    assert request.body["max_tokens"] == 64
    assert request.body["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_network(settings: Settings, make_upstream) -> None:
    upstream = make_upstream([b"data: [DONE]\n\n"])
    registry = ProviderRegistry(
        settings.model_copy(update={"groq_api_key": ""}),
        transport_overrides={"groq": upstream.transport},
    )
    adapter = registry.resolve("groq").adapter

    with pytest.raises(MissingCredentialsError) as exc:
        adapter.build_request(CONVERSATION, "llama3-8b-8192")

    assert exc.value.status_code == 500
    assert "groq" in exc.value.message
    assert adapter.has_credentials is False
    assert upstream.calls == []
    await registry.aclose()


@pytest.mark.asyncio
async def test_open_stream_prefetches_only_first_chunk(settings: Settings, make_upstream) -> None:
    upstream = make_upstream([b"data: [DONE]\n\n", b": trailing\n\n"])
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter

    stream = await adapter.open_stream(adapter.build_request(CONVERSATION, "llama3-8b-8192"))

    assert stream.status_code == 200
    assert upstream.stream.delivered == 1
    assert stream.first_chunk == b"data: [DONE]\n\n"
    sent = upstream.calls[0]
    assert sent.method == "POST"
    assert json.loads(sent.content)["stream"] is True
    await stream.aclose()
    assert upstream.stream.closed
    await registry.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("upstream_status", "relay_status"),
    [(429, 429), (401, 502), (500, 502), (503, 502)],
)
async def test_non_success_status_maps_to_upstream_error(
    settings: Settings, make_upstream, upstream_status: int, relay_status: int
) -> None:
    upstream = make_upstream(status_code=upstream_status, body=b'{"error":"nope"}')
    registry = ProviderRegistry(settings, transport_overrides={"openrouter": upstream.transport})
    adapter = registry.resolve("openrouter").adapter

    with pytest.raises(UpstreamError) as exc:
        await adapter.open_stream(adapter.build_request(CONVERSATION, "deepseek/deepseek-r1-0528:free"))

    error = exc.value
    assert error.code == ErrorCode.UPSTREAM_ERROR
    assert error.status_code == relay_status
    assert error.upstream_status == upstream_status
    assert error.body == '{"error":"nope"}'
    assert error.message.startswith(f"OpenRouter error: {upstream_status}")
    await registry.aclose()


@pytest.mark.asyncio
async def test_error_body_is_truncated(settings: Settings, make_upstream) -> None:
    upstream = make_upstream(status_code=500, body=b"x" * 5000)
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter

    with pytest.raises(UpstreamError) as exc:
        await adapter.open_stream(adapter.build_request(CONVERSATION, "gemma2-9b-it"))

    assert exc.value.body.endswith("...(truncated)")
    assert len(exc.value.body) < 2100
    await registry.aclose()


@pytest.mark.asyncio
async def test_empty_success_body_is_upstream_error(settings: Settings, make_upstream) -> None:
    upstream = make_upstream(status_code=200, body=b"")
    before = metrics.get("upstream_errors_total", provider="groq", kind="empty_body")
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter

    with pytest.raises(UpstreamError) as exc:
        await adapter.open_stream(adapter.build_request(CONVERSATION, "gemma2-9b-it"))

    assert exc.value.message == "No response body from Groq"
    assert exc.value.body == "empty body"
    assert exc.value.status_code == 502
    assert metrics.get("upstream_errors_total", provider="groq", kind="empty_body") == before + 1
    await registry.aclose()


@pytest.mark.asyncio
async def test_timeout_maps_to_gateway_timeout(settings: Settings, make_upstream) -> None:
    upstream = make_upstream(exc=httpx.ReadTimeout("timed out"))
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter

    with pytest.raises(UpstreamError) as exc:
        await adapter.open_stream(adapter.build_request(CONVERSATION, "gemma2-9b-it"))

    assert exc.value.status_code == 504
    await registry.aclose()


@pytest.mark.asyncio
async def test_connect_error_maps_to_bad_gateway(settings: Settings, make_upstream) -> None:
    upstream = make_upstream(exc=httpx.ConnectError("refused"))
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter

    with pytest.raises(UpstreamError) as exc:
        await adapter.open_stream(adapter.build_request(CONVERSATION, "gemma2-9b-it"))

    assert exc.value.status_code == 502
    assert exc.value.message == "Groq is unreachable"
    await registry.aclose()


@pytest.mark.asyncio
async def test_open_stream_respects_cancel_token(settings: Settings, make_upstream) -> None:
    upstream = make_upstream([b"data: [DONE]\n\n"])
    registry = ProviderRegistry(settings, transport_overrides={"groq": upstream.transport})
    adapter = registry.resolve("groq").adapter
    token = CancelToken()
    token.cancel("stop")

    with pytest.raises(StreamCancelledError):
        await adapter.open_stream(adapter.build_request(CONVERSATION, "gemma2-9b-it"), token)
    await registry.aclose()


def test_parse_event_vocabulary(settings: Settings) -> None:
    adapter = ProviderRegistry(settings).resolve("groq").adapter

    assert adapter.parse_event(SSEEvent(data="[DONE]")) == Done()
    assert adapter.parse_event(SSEEvent(data="  ")) is None
    assert adapter.parse_event(
        SSEEvent(data='{"choices":[{"delta":{"content":"hey"}}]}')
    ) == Delta("hey")
    frame_error = adapter.parse_event(SSEEvent(data="{broken"))
    assert isinstance(frame_error, FrameError)
    assert frame_error.raw == "{broken"


def test_extract_record_shapes() -> None:
    assert extract_record({"choices": [{"delta": {"content": "a"}}]}) == Delta("a")
    assert extract_record({"choices": []}) is None
    assert extract_record({"content": "b"}) == Delta("b")
    assert extract_record("c") is None
    assert extract_record({"error": {"message": "boom"}}) == Error(
        "boom", ErrorCode.UPSTREAM_ERROR.value
    )
    assert extract_record({"error": "flat"}) == Error("flat", ErrorCode.UPSTREAM_ERROR.value)
    assert extract_record(
        {"error": {"message": "boom"}, "choices": [{"delta": {"content": ""}, "finish_reason": "error"}]}
    ) == Error("boom", ErrorCode.UPSTREAM_ERROR.value)
    assert extract_record([1, 2]) is None
    assert extract_record({"unrelated": True}) is None
