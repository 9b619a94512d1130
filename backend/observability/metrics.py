"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


class Stopwatch:
    """
    Single-use monotonic timer.

    stop() emits exactly one METRIC_TIMER event; later calls return the
    first measurement without logging again.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._start_ns = time.monotonic_ns()
        self._duration_ms: int | None = None

    def stop(
        self,
        *,
        session_id: str | None = None,
        outcome: str = "ok",
        details: dict[str, Any] | None = None,
    ) -> int:
        """Stop the timer, emit the metric and return duration in ms."""
        if self._duration_ms is not None:
            return self._duration_ms

        self._duration_ms = (time.monotonic_ns() - self._start_ns) // 1_000_000

        log_event({
            "event_type": "METRIC_TIMER",
            "metric": self.name,
            "value_ms": self._duration_ms,
            "session_id": session_id,
            "outcome": outcome,
            "details": details or {},
        })
        return self._duration_ms


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block are re-raised and recorded as outcome=error

    The yielded dict is merged into the metric details, so callers can
    attach facts learned inside the block (byte counts, model names).

    Usage:
        with timed("tts_synthesis", session_id=sid) as extra:
            pcm = await synth()
            extra["bytes"] = len(pcm)
    """
    watch = Stopwatch(name)
    extra: dict[str, Any] = dict(details or {})
    outcome = "ok"
    try:
        yield extra
    except BaseException:
        outcome = "error"
        raise
    finally:
        watch.stop(session_id=session_id, outcome=outcome, details=extra)
