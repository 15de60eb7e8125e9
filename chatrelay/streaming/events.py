"""Normalized stream vocabulary shared by every provider adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Delta:
    """An incremental fragment of generated text."""

    text: str


@dataclass(frozen=True)
class Done:
    """Successful end of stream."""


@dataclass(frozen=True)
class Error:
    """Terminal failure after the response has been committed."""

    message: str
    code: str | None = None


@dataclass(frozen=True)
class FrameError:
    """A record whose payload could not be decoded; dropped by the normalizer."""

    raw: str
    reason: str


NormalizedEvent = Union[Delta, Done, Error]

# What an adapter may produce from a single upstream record.
ParsedRecord = Union[Delta, Done, Error, FrameError]


def is_terminal(event: NormalizedEvent) -> bool:
    return isinstance(event, (Done, Error))
