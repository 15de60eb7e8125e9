"""
Incremental server-sent-events framing parser.

Transport chunks arrive with arbitrary boundaries, so the parser keeps
the unterminated tail of the previous chunk in ``_buffer`` and only
emits an event once its terminating blank line has been seen. Lines are
split on LF (a trailing CR is stripped); bytes are decoded per complete
line so multi-byte UTF-8 sequences split across chunks survive intact.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched event record."""

    data: str
    event: str | None = None
    id: str | None = None


class SSEParser:
    """Parser state plus leftover buffer for one upstream stream."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._data_lines: list[str] = []
        self._event: str | None = None
        self._id: str | None = None
        self._first_line = True
        self.comments = 0

    @property
    def leftover(self) -> bytes:
        """Bytes received but not yet terminated by a newline."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """Consume a transport chunk and return every event it completes."""
        self._buffer.extend(chunk)
        events: list[SSEEvent] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            event = self._process_line(raw)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """
        Drain state at transport close.

        An unterminated final line and a pending event without its blank
        line are still dispatched.
        """
        events: list[SSEEvent] = []
        if self._buffer:
            raw = bytes(self._buffer)
            self._buffer.clear()
            event = self._process_line(raw)
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, raw: bytes) -> SSEEvent | None:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        line = raw.decode("utf-8", errors="replace")
        if self._first_line:
            self._first_line = False
            line = line.lstrip("\ufeff")

        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            self.comments += 1
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            self._id = value
        # "retry" and unknown fields carry nothing the relay needs
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data_lines:
            self._event = None
            return None
        event = SSEEvent(data="\n".join(self._data_lines), event=self._event, id=self._id)
        self._data_lines = []
        self._event = None
        return event
