"""
Gapless streaming playback queue.

Plays an unbounded sequence of independently-arriving AudioBuffers so that
buffer N+1 starts exactly when buffer N ends, regardless of arrival jitter.

Scheduling rule:
- start_at = max(next_start_time, context.current_time)
- next_start_time = start_at + buffer.duration

Interruption (barge-in):
- Stop every active source, clear the active set, reset the watermark to 0.
  Audio scheduled for the future is abandoned, never played late.

Design:
- One queue per live session; no module-level state.
- Deterministic, synchronous API (called from the event loop).
"""

from __future__ import annotations

from dataclasses import dataclass

from audio.buffers import AudioBuffer
from audio.context import AudioContext, BufferSource
from observability.logger import log_event


@dataclass
class PlaybackCounters:
    """Counters for observability."""
    scheduled: int = 0
    completed: int = 0
    interrupted: int = 0
    late_starts: int = 0


class GaplessPlaybackQueue:
    """
    Back-to-back scheduler for streamed audio chunks.

    Active sources are tracked by identity and removed when they end
    naturally. A source-ended callback for a source no longer in the active
    set (already interrupted) is ignored.
    """

    def __init__(self, context: AudioContext, *, session_id: str | None = None) -> None:
        self._context = context
        self._session_id = session_id
        self._active: dict[int, BufferSource] = {}
        self.next_start_time: float = 0.0
        self.counters: PlaybackCounters = PlaybackCounters()

    # -------------------------
    # Core operations
    # -------------------------

    def enqueue(self, buffer: AudioBuffer) -> BufferSource:
        """
        Schedule `buffer` to start when the previously scheduled one ends.

        Returns the started source (its start_time is the effective start).
        """
        now = self._context.current_time
        start_at = max(self.next_start_time, now)
        if self.next_start_time and self.next_start_time < now:
            # Underrun: the previous chunk already finished before this arrived
            self.counters.late_starts += 1

        source = self._context.create_buffer_source(buffer)
        source.on_ended = self._on_source_ended
        source.start(start_at)

        self.next_start_time = start_at + buffer.duration
        self._active[id(source)] = source
        self.counters.scheduled += 1
        return source

    def interrupt(self) -> int:
        """
        Barge-in: stop everything now and forget the watermark.

        Returns the number of sources that were stopped.
        """
        stopped = self._stop_active()
        self.counters.interrupted += stopped

        log_event({
            "event_type": "PLAYBACK_INTERRUPTED",
            "session_id": self._session_id,
            "stopped_sources": stopped,
        })
        return stopped

    def stop(self) -> None:
        """
        Teardown: stop all sources and clear state unconditionally.

        Safe to call repeatedly.
        """
        self._stop_active()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._active)

    def is_empty(self) -> bool:
        """True when nothing is playing or scheduled."""
        return not self._active

    def buffered_seconds(self) -> float:
        """Seconds of scheduled audio still ahead of the device clock."""
        return max(0.0, self.next_start_time - self._context.current_time)

    def snapshot(self) -> dict[str, float | int]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "active": len(self._active),
            "buffered_s": self.buffered_seconds(),
            "scheduled": self.counters.scheduled,
            "completed": self.counters.completed,
            "interrupted": self.counters.interrupted,
            "late_starts": self.counters.late_starts,
        }

    # -------------------------
    # Internal
    # -------------------------

    def _stop_active(self) -> int:
        sources = list(self._active.values())
        self._active.clear()
        self.next_start_time = 0.0

        for source in sources:
            source.stop()
        return len(sources)

    def _on_source_ended(self, source: BufferSource) -> None:
        if self._active.pop(id(source), None) is source:
            self.counters.completed += 1
