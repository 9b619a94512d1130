"""
JSONL event logger.

- One JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Events may carry a "level" key (DEBUG/INFO/WARNING/ERROR); events without
one are treated as INFO. Events below the configured threshold are dropped.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_threshold: int = _LEVELS["INFO"]
_enabled: bool = True


def configure(*, level: str = "INFO", enabled: bool = True) -> None:
    """
    Set the minimum level and global on/off switch.

    Called once by the entry points from AppConfig.
    Unknown level names fall back to INFO.
    """
    global _threshold, _enabled  # pylint: disable=global-statement
    _threshold = _LEVELS.get(level.upper(), _LEVELS["INFO"])
    _enabled = enabled


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    This function:
    - Stamps ts_ms (wall clock) if the caller did not
    - Serializes to JSON
    - Writes exactly one line
    - Never raises
    """
    if not _enabled:
        return

    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _threshold:
        return

    payload: dict[str, Any] = dict(event)
    payload.setdefault("ts_ms", int(time.time() * 1000))

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash the audio pipeline
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


class BoundLogger:
    """
    Logger carrying fixed context (session_id, component, ...).

    Context keys are merged under each event; keys in the event win.
    """

    def __init__(self, **context: Any) -> None:
        self._context = context

    def bind(self, **context: Any) -> BoundLogger:
        """Return a new logger with additional context."""
        return BoundLogger(**{**self._context, **context})

    def __call__(self, event: Mapping[str, Any]) -> None:
        log_event({**self._context, **event})


def bind(**context: Any) -> BoundLogger:
    """Create a logger bound to the given context."""
    return BoundLogger(**context)
