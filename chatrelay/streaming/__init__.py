"""Upstream stream framing, normalization, and cancellation."""

from chatrelay.streaming.cancel import CancelToken, StreamCancelledError
from chatrelay.streaming.events import (
    Delta,
    Done,
    Error,
    FrameError,
    NormalizedEvent,
    ParsedRecord,
    is_terminal,
)
from chatrelay.streaming.normalizer import StreamNormalizer
from chatrelay.streaming.sse import SSEEvent, SSEParser

__all__ = [
    "CancelToken",
    "Delta",
    "Done",
    "Error",
    "FrameError",
    "NormalizedEvent",
    "ParsedRecord",
    "SSEEvent",
    "SSEParser",
    "StreamCancelledError",
    "StreamNormalizer",
    "is_terminal",
]
