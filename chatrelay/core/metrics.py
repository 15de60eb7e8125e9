"""
In-process relay metrics exposed at ``GET /health/metrics``.

Counters may carry labels (``provider``, ``kind``, ``outcome``). A labelled
increment also bumps the unlabelled total, so ``get(name)`` is always the
aggregate across providers.
"""

from __future__ import annotations

import threading
from typing import Any

COUNTERS = (
    "streams_started_total",
    "streams_finished_total",
    "streams_cancelled_total",
    "upstream_errors_total",
    "malformed_frames_total",
    "sse_pings_sent",
)
SUMMARIES = ("stream_duration_seconds",)


def series_key(name: str, labels: dict[str, str]) -> str:
    """``name{a=1,b=2}`` with labels sorted; the bare name when unlabelled."""
    if not labels:
        return name
    rendered = ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class MetricsRegistry:
    """Thread-safe counters, gauges and duration summaries."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {name: 0.0 for name in COUNTERS}
        self._gauges: dict[str, float] = {"active_streams": 0.0}
        self._summaries: dict[str, dict[str, float]] = {
            name: {"count": 0.0, "sum": 0.0, "max": 0.0} for name in SUMMARIES
        }

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0.0) + amount
            if labels:
                key = series_key(name, labels)
                self._counters[key] = self._counters.get(key, 0.0) + amount

    def observe(self, name: str, value: float) -> None:
        """Add one observation to a summary (count, sum, max)."""
        with self._lock:
            summary = self._summaries.setdefault(name, {"count": 0.0, "sum": 0.0, "max": 0.0})
            summary["count"] += 1
            summary["sum"] += value
            summary["max"] = max(summary["max"], value)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def get(self, name: str, **labels: str) -> float:
        """Current counter value (0 if never incremented)."""
        with self._lock:
            return self._counters.get(series_key(name, labels), 0.0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "summaries": {name: dict(values) for name, values in self._summaries.items()},
            }


metrics = MetricsRegistry()
