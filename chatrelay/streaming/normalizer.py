"""
Stream normalizer.

Drives an adapter's frame parser over the upstream byte stream and turns
the parsed records into the provider-agnostic event vocabulary. Exactly
one terminal event (``Done`` or ``Error``) ends every stream that is not
cancelled; nothing is emitted after it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from typing import TYPE_CHECKING

import httpx

from chatrelay.core import ErrorCode, get_logger, metrics
from chatrelay.streaming.cancel import CancelToken
from chatrelay.streaming.events import (
    Delta,
    Done,
    Error,
    FrameError,
    NormalizedEvent,
    ParsedRecord,
    is_terminal,
)

if TYPE_CHECKING:
    from chatrelay.providers.base import Provider, UpstreamStream

logger = get_logger(__name__)


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class StreamNormalizer:
    """Normalizes one upstream stream; instances are single-use."""

    def __init__(self, provider: Provider, cancel: CancelToken | None = None):
        self.provider = provider
        self.cancel = cancel or CancelToken()
        self.dropped_frames = 0

    async def events(self, stream: UpstreamStream) -> AsyncGenerator[NormalizedEvent, None]:
        """
        Yield normalized events for ``stream``.

        The upstream response is always closed when iteration ends, including
        on cancellation and when the consumer stops iterating early.

        Raises:
            StreamCancelledError: If the cancel token fires mid-stream.
        """
        parser = self.provider.new_parser()
        chunks = stream.aiter_bytes().__aiter__()
        try:
            while True:
                self.cancel.raise_if_cancelled()
                try:
                    chunk = await self.cancel.race(_next_chunk(chunks))
                except httpx.HTTPError as exc:
                    metrics.increment(
                        "upstream_errors_total", provider=self.provider.provider_id, kind="transport"
                    )
                    logger.warning(
                        "Upstream transport failed mid-stream",
                        data={"provider": self.provider.provider_id, "error": str(exc)},
                    )
                    yield Error("Upstream connection lost", ErrorCode.STREAMING_ERROR.value)
                    return

                if chunk is None:
                    break
                if not chunk:
                    continue

                for record in self.provider.parse_frame(parser, chunk):
                    event = self._convert(record)
                    if event is None:
                        continue
                    yield event
                    if is_terminal(event):
                        return

            # Transport closed: drain anything left in the parser.
            for record in self.provider.finish(parser):
                event = self._convert(record)
                if event is None:
                    continue
                yield event
                if is_terminal(event):
                    return

            logger.debug(
                "Upstream closed without end marker",
                data={"provider": self.provider.provider_id},
            )
            yield Done()
        finally:
            await stream.aclose()

    def _convert(self, record: ParsedRecord) -> NormalizedEvent | None:
        if isinstance(record, FrameError):
            self.dropped_frames += 1
            metrics.increment("malformed_frames_total", provider=self.provider.provider_id)
            logger.warning(
                "Dropped malformed upstream frame",
                data={
                    "provider": self.provider.provider_id,
                    "reason": record.reason,
                    "frame": record.raw[:200],
                },
            )
            return None
        if isinstance(record, Delta) and not record.text:
            return None
        if isinstance(record, Error):
            metrics.increment(
                "upstream_errors_total", provider=self.provider.provider_id, kind="in_band"
            )
        return record
