"""
Audio output context (software mixer + device clock).

Responsibilities:
- Own the output device clock (seconds of audio rendered so far)
- Create one-shot BufferSource handles for decoded AudioBuffers
- Schedule sources at absolute clock times, optionally from an offset
- Mix all active sources into output blocks on demand (render)
- Deliver "ended" notifications for natural completion and stop()

Clock model:
- current_time advances only when render() is called. A speaker sink calls
  render() from the device callback; tests call render()/advance() directly
  to drive the clock deterministically.

Threading:
- render() may run on the audio device thread while the event loop creates,
  starts and stops sources. The source list and frame counter are guarded
  by a lock.
- Ended callbacks never run synchronously inside stop(). With an attached
  event loop they are posted with call_soon_threadsafe; otherwise they are
  queued and delivered at the next render().
"""

# pylint: disable=protected-access
from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional

import numpy as np

from audio.buffers import AudioBuffer
from constants import OUTPUT_BLOCK_FRAMES, OUTPUT_SAMPLE_RATE_HZ, seconds_to_samples


class InvalidStateError(RuntimeError):
    """Operation not allowed in the current source/context state."""


EndedCallback = Callable[["BufferSource"], None]


class BufferSource:
    """
    Handle to a single playback of one AudioBuffer.

    Invariants:
    - start() may be called at most once; a stopped or finished source
      cannot be restarted (create a new one instead).
    - stop() is idempotent and never raises.
    - on_ended fires at most once.
    """

    def __init__(self, context: AudioContext, buffer: AudioBuffer, samples: np.ndarray) -> None:
        self.context = context
        self.buffer = buffer
        self.on_ended: Optional[EndedCallback] = None

        # Effective start (seconds on the context clock) once started
        self.start_time: float | None = None
        self.offset: float = 0.0

        self._samples = samples
        self._start_frame = 0
        self._offset_frames = 0
        self._started = False
        self._ended = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        """
        Schedule playback at context time `when`, beginning `offset` seconds
        into the buffer. A `when` in the past starts immediately.
        """
        if self._started:
            raise InvalidStateError("BufferSource can only be started once")
        self.context._schedule(self, when, offset)

    def stop(self) -> None:
        """Stop playback immediately. No-op if never started or already ended."""
        self.context._stop(self)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def end_time(self) -> float | None:
        """Context time at which playback finishes if not stopped."""
        if not self._started:
            return None
        return self._end_frame / self.context.sample_rate_hz

    @property
    def _end_frame(self) -> int:
        return self._start_frame + (len(self._samples) - self._offset_frames)


class AudioContext:
    """
    Mono float32 mixer with a render-driven clock.

    One context per output device. Lesson playback and live-call playback
    share the gateway's context but are never active at the same time.
    """

    def __init__(self, sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")

        self._sample_rate_hz = sample_rate_hz
        self._lock = threading.Lock()
        self._frame = 0
        self._sources: list[BufferSource] = []
        self._pending: list[tuple[EndedCallback, BufferSource]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @property
    def sample_rate_hz(self) -> int:
        return self._sample_rate_hz

    @property
    def current_time(self) -> float:
        """Seconds of audio rendered since the context was created."""
        with self._lock:
            return self._frame / self._sample_rate_hz

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_source_count(self) -> int:
        with self._lock:
            return len(self._sources)

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Post ended callbacks onto `loop` instead of delivering them at render()."""
        self._loop = loop

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def create_buffer_source(self, buffer: AudioBuffer) -> BufferSource:
        """Create a new, unstarted source for `buffer` (resampled if needed)."""
        if self._closed:
            raise InvalidStateError("AudioContext is closed")
        return BufferSource(self, buffer, self._resample(buffer))

    def _resample(self, buffer: AudioBuffer) -> np.ndarray:
        samples = np.asarray(buffer.samples, dtype=np.float32)
        if buffer.sample_rate_hz == self._sample_rate_hz or samples.size == 0:
            return samples

        ratio = buffer.sample_rate_hz / self._sample_rate_hz
        n_out = int(round(samples.size / ratio))
        positions = np.arange(n_out, dtype=np.float64) * ratio
        return np.interp(
            positions, np.arange(samples.size, dtype=np.float64), samples
        ).astype(np.float32)

    def _schedule(self, source: BufferSource, when: float, offset: float) -> None:
        finished_early = False
        with self._lock:
            if self._closed:
                raise InvalidStateError("AudioContext is closed")

            source._started = True
            source._start_frame = max(
                seconds_to_samples(when, self._sample_rate_hz), self._frame
            )
            source._offset_frames = min(
                seconds_to_samples(offset, self._sample_rate_hz),
                len(source._samples),
            )
            source.start_time = source._start_frame / self._sample_rate_hz
            source.offset = max(0.0, offset)

            if source._end_frame <= source._start_frame:
                # Nothing left to play past the offset
                source._ended = True
                finished_early = True
            else:
                self._sources.append(source)

        if finished_early:
            self._dispatch_ended(source)

    def _stop(self, source: BufferSource) -> None:
        with self._lock:
            if not source._started or source._ended:
                return
            source._ended = True
            if source in self._sources:
                self._sources.remove(source)

        self._dispatch_ended(source)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, frames: int) -> np.ndarray:
        """
        Mix the next `frames` samples of all active sources and advance the
        clock. Returns float32 mono samples clipped to [-1.0, 1.0].
        """
        self._drain_pending()

        out = np.zeros(max(0, frames), dtype=np.float32)
        if frames <= 0:
            return out

        finished: list[BufferSource] = []
        with self._lock:
            f0 = self._frame
            f1 = f0 + frames

            for source in list(self._sources):
                start = source._start_frame
                end = source._end_frame
                a = max(start, f0)
                b = min(end, f1)
                if a < b:
                    i0 = source._offset_frames + (a - start)
                    out[a - f0:b - f0] += source._samples[i0:i0 + (b - a)]

                if end <= f1:
                    source._ended = True
                    self._sources.remove(source)
                    finished.append(source)

            self._frame = f1

        for source in finished:
            self._dispatch_ended(source)
        self._drain_pending()

        np.clip(out, -1.0, 1.0, out=out)
        return out

    def advance(self, seconds: float, *, block_frames: int = OUTPUT_BLOCK_FRAMES) -> None:
        """Render and discard `seconds` of audio in device-sized blocks."""
        remaining = seconds_to_samples(seconds, self._sample_rate_hz)
        while remaining > 0:
            step = min(block_frames, remaining)
            self.render(step)
            remaining -= step

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def stop_all(self) -> None:
        """Stop every active source (each fires its ended callback)."""
        with self._lock:
            sources = list(self._sources)
        for source in sources:
            source.stop()

    def close(self) -> None:
        """Stop all sources and refuse new ones. Idempotent."""
        if self._closed:
            return
        self.stop_all()
        self._closed = True

    # ------------------------------------------------------------------
    # Callback delivery
    # ------------------------------------------------------------------

    def _dispatch_ended(self, source: BufferSource) -> None:
        callback = source.on_ended
        if callback is None:
            return

        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback, source)
            return

        with self._lock:
            self._pending.append((callback, source))

    def _drain_pending(self) -> None:
        with self._lock:
            if not self._pending:
                return
            pending = self._pending
            self._pending = []

        for callback, source in pending:
            callback(source)
