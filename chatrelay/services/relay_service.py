"""Relay orchestration: validation, upstream open, SSE output, and cancellation."""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from chatrelay.auth import Identity
from chatrelay.config import Settings
from chatrelay.core import (
    AppError,
    ErrorCode,
    InvalidInputError,
    PayloadTooLargeError,
    UnauthorizedError,
    bind_stream,
    get_logger,
    metrics,
)
from chatrelay.providers import ChatMessage, ProviderBinding, ProviderRegistry, UpstreamStream
from chatrelay.streaming import (
    CancelToken,
    Delta,
    Done,
    Error,
    NormalizedEvent,
    StreamCancelledError,
    StreamNormalizer,
)

logger = get_logger(__name__)

DONE_RECORD = "data: [DONE]\n\n"


class RelayState(str, Enum):
    """Lifecycle of one relay call."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    VALIDATED = "validated"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class ActiveStream:
    """Metadata for an in-flight relay stream."""

    stream_id: str
    user_id: str | None
    provider_id: str
    started_at: datetime
    cancel: CancelToken


class ActiveStreamManager:
    """Tracks active streams so they can be cancelled by id."""

    def __init__(self) -> None:
        self._streams: dict[str, ActiveStream] = {}
        self._lock = asyncio.Lock()

    async def register(self, stream: ActiveStream) -> None:
        """Track a new stream."""
        async with self._lock:
            self._streams[stream.stream_id] = stream
            metrics.set_gauge("active_streams", float(len(self._streams)))

    async def unregister(self, stream_id: str) -> ActiveStream | None:
        """Stop tracking a stream once it completes."""
        async with self._lock:
            stream = self._streams.pop(stream_id, None)
            metrics.set_gauge("active_streams", float(len(self._streams)))
        return stream

    async def cancel(self, stream_id: str, identity: Identity | None) -> bool:
        """
        Signal cancellation for a running stream.

        Streams owned by a user can only be cancelled by that user; guest
        streams are addressed by their unguessable id alone.
        """
        async with self._lock:
            stream = self._streams.get(stream_id)
        if stream is None:
            return False
        if stream.user_id is not None and (identity is None or identity.user_id != stream.user_id):
            return False
        stream.cancel.cancel("cancelled by caller")
        return True

    async def count(self) -> int:
        async with self._lock:
            return len(self._streams)


async def _next_event(events: AsyncIterator[NormalizedEvent]) -> NormalizedEvent | None:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return None


class RelaySession:
    """
    One committed-or-about-to-be-committed relay.

    Created only after the upstream stream opened successfully; from here
    on, failures are reported in-band.
    """

    def __init__(
        self,
        *,
        stream_id: str,
        identity: Identity,
        binding: ProviderBinding,
        model: str,
        upstream: UpstreamStream,
        cancel: CancelToken,
        manager: ActiveStreamManager,
        ping_interval: float,
    ):
        self.stream_id = stream_id
        self.identity = identity
        self.binding = binding
        self.model = model
        self.upstream = upstream
        self.cancel = cancel
        self.manager = manager
        self.ping_interval = ping_interval
        self.state = RelayState.VALIDATED
        self.normalizer = StreamNormalizer(binding.adapter, cancel)

    @property
    def provider_id(self) -> str:
        return self.binding.descriptor.id

    def events(self) -> AsyncGenerator[NormalizedEvent, None]:
        """Normalized events without SSE encoding (for in-process callers)."""
        return self.normalizer.events(self.upstream)

    async def sse(self) -> AsyncIterator[str]:
        """Stream normalized events as SSE records."""
        self.state = RelayState.STREAMING
        await self.manager.register(
            ActiveStream(
                stream_id=self.stream_id,
                user_id=self.identity.user_id,
                provider_id=self.provider_id,
                started_at=datetime.now(UTC),
                cancel=self.cancel,
            )
        )
        metrics.increment("streams_started_total", provider=self.provider_id)
        # The response body runs in its own request-scoped context.
        bind_stream(self.stream_id)
        started = time.perf_counter()
        events = self.events()
        pending: asyncio.Future[NormalizedEvent | None] | None = None
        outcome = "cancelled"
        try:
            yield self.format_sse_comment(f"stream {self.stream_id}")
            while True:
                if pending is None:
                    pending = asyncio.ensure_future(_next_event(events))
                done, _ = await asyncio.wait({pending}, timeout=self.ping_interval or None)
                if not done:
                    # Keep idle connections alive while upstream is thinking.
                    metrics.increment("sse_pings_sent")
                    yield self.format_sse_comment("ping")
                    continue

                event = pending.result()
                pending = None
                if event is None:
                    break
                if isinstance(event, Delta):
                    yield self.format_sse_delta(event.text)
                elif isinstance(event, Done):
                    outcome = "done"
                    yield DONE_RECORD
                    break
                elif isinstance(event, Error):
                    outcome = "error"
                    yield self.format_sse_error(
                        event.code or ErrorCode.STREAMING_ERROR.value, event.message
                    )
                    break
        except StreamCancelledError as exc:
            metrics.increment("streams_cancelled_total")
            logger.info("Relay stream cancelled", data={"reason": exc.reason})
        except asyncio.CancelledError:
            # Client went away; nothing more can be written.
            self.cancel.cancel("client disconnected")
            metrics.increment("streams_cancelled_total")
            logger.info("Client disconnected from relay stream")
            raise
        except Exception as exc:
            outcome = "error"
            logger.exception(
                "Unexpected error during relay stream",
                exc_info=exc,
                data={"provider": self.provider_id},
            )
            yield self.format_sse_error(
                ErrorCode.INTERNAL_ERROR.value, "An unexpected error occurred"
            )
        finally:
            # Runs in its own task so a cancelled response task cannot interrupt it.
            await asyncio.shield(self._release(pending, events))
            elapsed = time.perf_counter() - started
            metrics.observe("stream_duration_seconds", elapsed)
            metrics.increment("streams_finished_total", outcome=outcome)
            logger.info(
                "Relay stream closed",
                data={
                    "provider": self.provider_id,
                    "model": self.model,
                    "outcome": outcome,
                    "duration_s": round(elapsed, 3),
                },
            )

    async def _release(
        self,
        pending: asyncio.Future[NormalizedEvent | None] | None,
        events: AsyncGenerator[NormalizedEvent, None],
    ) -> None:
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
        await events.aclose()
        await self.upstream.aclose()
        self.state = RelayState.CLOSED
        await self.manager.unregister(self.stream_id)

    async def aclose(self) -> None:
        """Release the upstream connection if the stream was never consumed."""
        self.cancel.cancel("closed")
        await self.upstream.aclose()
        self.state = RelayState.CLOSED

    @staticmethod
    def format_sse_delta(text: str) -> str:
        data = json.dumps({"content": text}, separators=(",", ":"), ensure_ascii=False)
        return f"data: {data}\n\n"

    @staticmethod
    def format_sse_error(code: str, message: str) -> str:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return f"event: error\ndata: {data}\n\n"

    @staticmethod
    def format_sse_comment(comment: str = "ping") -> str:
        return f": {comment}\n\n"


class RelayService:
    """Validates relay calls and opens upstream streams."""

    def __init__(self, registry: ProviderRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings
        self.manager = ActiveStreamManager()

    def authenticate(self, identity: Identity | None, guest_requested: bool) -> Identity:
        """
        Unauthenticated -> Authenticated.

        Raises:
            UnauthorizedError: If there is no session and no guest flag.
        """
        if identity is not None and identity.authenticated:
            return identity
        if guest_requested:
            return Identity.guest()
        raise UnauthorizedError("Unauthorized")

    def validate(
        self,
        identity: Identity,
        messages: Sequence[ChatMessage],
        provider_id: str,
        model: str,
    ) -> ProviderBinding:
        """
        Authenticated -> Validated. Never touches the network.

        Raises:
            InvalidInputError: If there are no messages.
            UnknownProviderError / InvalidModelError: If the pair is not registered.
            PayloadTooLargeError: If a guest conversation exceeds the byte budget.
        """
        if not messages:
            raise InvalidInputError("Messages are required")

        self.registry.validate_model(provider_id, model)
        binding = self.registry.resolve(provider_id)

        if identity.is_guest:
            size = sum(len(message.content.encode("utf-8")) for message in messages)
            limit = self.settings.guest_max_content_bytes
            if size > limit:
                raise PayloadTooLargeError(size, limit)
        return binding

    async def open(
        self,
        *,
        identity: Identity,
        messages: Sequence[ChatMessage],
        provider_id: str,
        model: str,
        max_tokens: int | None = None,
    ) -> RelaySession:
        """
        Validated -> Streaming precondition: the upstream stream is open.

        Errors raised here happen before any byte reaches the caller and are
        surfaced as failed HTTP responses.
        """
        binding = self.validate(identity, messages, provider_id, model)
        stream_id = str(uuid.uuid4())
        request = binding.adapter.build_request(messages, model, max_tokens)
        cancel = CancelToken()
        try:
            upstream = await binding.adapter.open_stream(request, cancel)
        except AppError as exc:
            logger.warning(
                "Upstream stream could not be opened",
                data={"provider": provider_id, "code": exc.code.value, "status": exc.status_code},
            )
            raise

        logger.info(
            "Relay stream opened",
            data={
                "stream_id": stream_id,
                "provider": provider_id,
                "model": model,
                "guest": identity.is_guest,
            },
        )
        return RelaySession(
            stream_id=stream_id,
            identity=identity,
            binding=binding,
            model=model,
            upstream=upstream,
            cancel=cancel,
            manager=self.manager,
            ping_interval=float(self.settings.sse_ping_interval_seconds or 0),
        )

    async def cancel_stream(self, stream_id: str, identity: Identity | None) -> bool:
        """Cancel an active stream by id."""
        return await self.manager.cancel(stream_id, identity)
