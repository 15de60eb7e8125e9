"""Tests for settings, logging, and metrics plumbing."""

from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from chatrelay.config import Settings
from chatrelay.core import request_id_ctx, stream_id_ctx
from chatrelay.core.logging import (
    REDACTED,
    ConsoleFormatter,
    StructuredFormatter,
    get_logger,
    redact,
)
from chatrelay.core.metrics import MetricsRegistry


def test_settings_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.providers_enabled_list == ["openrouter", "groq"]
    assert settings.guest_max_content_bytes == 16384
    assert settings.openrouter_base_url == "https://openrouter.ai/api/v1"
    assert settings.groq_base_url == "https://api.groq.com/openai/v1"
    assert settings.is_production is False


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROQ_API_KEY", "from-env")
    monkeypatch.setenv("PROVIDERS_ENABLED", " groq , ")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")

    settings = Settings(_env_file=None)

    assert settings.groq_api_key == "from-env"
    assert settings.providers_enabled_list == ["groq"]
    assert settings.cors_origins_list == ["https://a.test", "https://b.test"]


def test_settings_validation() -> None:
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"
    assert Settings(_env_file=None, environment=" Production ").is_production

    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="chatty")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, environment="qa")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, guest_max_content_bytes=0)


def make_record(message: str, data: dict | None = None) -> logging.LogRecord:
    record = logging.LogRecord("chatrelay.test", logging.INFO, __file__, 1, message, None, None)
    if data is not None:
        record.data = data
    return record


def test_structured_formatter_includes_context() -> None:
    request_token = request_id_ctx.set("req-1")
    stream_token = stream_id_ctx.set("stream-1")
    try:
        line = StructuredFormatter().format(make_record("hello", {"provider": "groq"}))
    finally:
        request_id_ctx.reset(request_token)
        stream_id_ctx.reset(stream_token)

    payload = json.loads(line)
    assert payload["message"] == "hello"
    assert payload["request_id"] == "req-1"
    assert payload["stream_id"] == "stream-1"
    assert payload["data"] == {"provider": "groq"}


def test_console_formatter_appends_data() -> None:
    line = ConsoleFormatter().format(make_record("hello", {"k": 1}))

    assert "hello" in line
    assert "{'k': 1}" in line


def test_structured_formatter_redacts_sensitive_fields() -> None:
    data = {
        "model": "llama3-8b-8192",
        "Authorization": "Bearer sk-live",
        "messages": [{"role": "user", "content": "secret plans"}],
        "nested": {"api_key": "k", "roles": ["user"]},
    }

    payload = json.loads(StructuredFormatter().format(make_record("sending", data)))

    assert payload["data"] == {
        "model": "llama3-8b-8192",
        "Authorization": REDACTED,
        "messages": REDACTED,
        "nested": {"api_key": REDACTED, "roles": ["user"]},
    }
    assert "secret plans" not in json.dumps(payload)


def test_redact_recurses_into_lists() -> None:
    assert redact([{"content": "x"}, {"status": 200}]) == [{"content": REDACTED}, {"status": 200}]
    assert redact("plain") == "plain"


def test_console_formatter_shows_stream_scope() -> None:
    request_token = request_id_ctx.set("abcdef123456")
    stream_token = stream_id_ctx.set("0123456789ab")
    try:
        line = ConsoleFormatter().format(make_record("relaying", {"token": "t"}))
    finally:
        request_id_ctx.reset(request_token)
        stream_id_ctx.reset(stream_token)

    assert "| abcdef12/01234567 |" in line
    assert REDACTED in line and "'t'" not in line


def test_context_logger_passes_data(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("chatrelay.test.context")

    with caplog.at_level(logging.INFO, logger="chatrelay.test.context"):
        logger.info("structured", data={"x": 1})

    assert caplog.records[-1].data == {"x": 1}


def test_metrics_registry() -> None:
    registry = MetricsRegistry()

    registry.increment("streams_started_total")
    registry.increment("custom_total", 2)
    registry.set_gauge("active_streams", 3)

    snapshot = registry.snapshot()
    assert snapshot["counters"]["streams_started_total"] == 1
    assert snapshot["counters"]["custom_total"] == 2
    assert snapshot["gauges"]["active_streams"] == 3
    assert registry.get("never_seen") == 0.0


def test_labelled_counters_roll_up_into_totals() -> None:
    registry = MetricsRegistry()

    registry.increment("upstream_errors_total", provider="groq", kind="timeout")
    registry.increment("upstream_errors_total", provider="openrouter", kind="in_band")
    registry.increment("upstream_errors_total", provider="groq", kind="timeout")

    assert registry.get("upstream_errors_total") == 3
    assert registry.get("upstream_errors_total", provider="groq", kind="timeout") == 2
    assert registry.get("upstream_errors_total", kind="timeout", provider="groq") == 2
    counters = registry.snapshot()["counters"]
    assert counters["upstream_errors_total{kind=in_band,provider=openrouter}"] == 1


def test_duration_summary() -> None:
    registry = MetricsRegistry()

    registry.observe("stream_duration_seconds", 0.5)
    registry.observe("stream_duration_seconds", 2.0)

    snapshot = registry.snapshot()
    assert snapshot["summaries"]["stream_duration_seconds"] == {"count": 2, "sum": 2.5, "max": 2.0}
    assert "stream_duration_seconds" not in snapshot["counters"]
