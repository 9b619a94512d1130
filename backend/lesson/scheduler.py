"""
Lesson playback scheduler.

Plays one pre-rendered narration buffer, tracks the playback cursor against a
queue of comprehension checkpoints, and pauses deterministically when a
checkpoint is reached so the learner can answer.

State machine:
    idle -> talking -> paused / awaiting_answer -> responding -> talking -> ... -> idle

Cursor:
    position = pause_time + (context.current_time - started_at) while talking,
    frozen otherwise. Clamped to [0, duration].

Polling:
- tick() is the cooperative poll: recompute position, pop at most ONE due
  checkpoint, or handle the end of the track.
- While talking, a polling task calls tick() every LESSON_POLL_INTERVAL_S if
  an event loop is running. Callers without a loop call tick() themselves.

Staleness:
- Only the currently active source may end the track. An ended callback
  from a source that was replaced or stopped is ignored (identity check).
- answer() captures a generation number; load()/stop() bump it so an
  in-flight follow-up never resumes a lesson that was torn down.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from audio.buffers import AudioBuffer
from audio.context import AudioContext, BufferSource
from audio.pcm import decode_pcm16
from constants import LESSON_POLL_INTERVAL_S, OUTPUT_SAMPLE_RATE_HZ
from lesson.checkpoints import Checkpoint, CheckpointQueue
from observability.logger import bind


class LessonState(str, Enum):
    """Playback states of a lesson."""

    IDLE = "idle"
    TALKING = "talking"
    PAUSED = "paused"
    AWAITING_ANSWER = "awaiting_answer"
    RESPONDING = "responding"


class NoLessonLoadedError(RuntimeError):
    """play() called before load()."""


@dataclass(frozen=True)
class LessonSegment:
    """Next part of a segmented lesson returned by the continuation collaborator."""
    buffer: AudioBuffer
    checkpoints: tuple[Checkpoint, ...] = ()


# (question, answer) -> PCM16 bytes of a short spoken follow-up
FollowUpFn = Callable[[str, str], Awaitable[bytes]]
# (answered checkpoint, answer) -> next segment, or None when the lesson is over
ContinuationFn = Callable[[Checkpoint, str], Awaitable[Optional[LessonSegment]]]


class LessonScheduler:
    """
    Narration player with checkpoint pauses.

    One scheduler per loaded lesson; it never owns the AudioContext.
    """

    def __init__(
        self,
        context: AudioContext,
        *,
        follow_up: FollowUpFn | None = None,
        continuation: ContinuationFn | None = None,
        on_state_change: Callable[[LessonState], None] | None = None,
        on_checkpoint: Callable[[Checkpoint], None] | None = None,
        session_id: str | None = None,
        poll_interval_s: float = LESSON_POLL_INTERVAL_S,
        clip_sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
    ) -> None:
        self._context = context
        self._follow_up = follow_up
        self._continuation = continuation
        self._on_state_change = on_state_change
        self._on_checkpoint = on_checkpoint
        self._poll_interval_s = poll_interval_s
        self._clip_sample_rate_hz = clip_sample_rate_hz
        self._log = bind(component="lesson", session_id=session_id)

        self._buffer: AudioBuffer | None = None
        self._checkpoints = CheckpointQueue()
        self._pending: Checkpoint | None = None

        self._state = LessonState.IDLE
        self._pause_time = 0.0
        self._started_at = 0.0
        self._position = 0.0

        self._source: BufferSource | None = None
        self._clip_source: BufferSource | None = None
        self._clip_done: asyncio.Future[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._generation = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> LessonState:
        return self._state

    @property
    def duration(self) -> float:
        return self._buffer.duration if self._buffer is not None else 0.0

    @property
    def pause_time(self) -> float:
        return self._pause_time

    @property
    def position(self) -> float:
        """Current playback position in seconds (live while talking)."""
        if self._state is LessonState.TALKING:
            return self._live_position()
        return self._position

    @property
    def pending_checkpoint(self) -> Checkpoint | None:
        """Question waiting for an answer, if any."""
        return self._pending

    @property
    def remaining_checkpoints(self) -> int:
        return len(self._checkpoints)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def load(self, buffer: AudioBuffer, checkpoints: Iterable[Checkpoint] = ()) -> None:
        """
        Replace the current narration and checkpoint queue.

        Resets the cursor to 0. Does not start playback. Checkpoints are
        kept in the given order.
        """
        self._generation += 1
        self._teardown()

        self._buffer = buffer
        self._checkpoints = CheckpointQueue(checkpoints)
        self._pending = None
        self._pause_time = 0.0
        self._position = 0.0
        self._set_state(LessonState.IDLE)

        self._log({
            "event_type": "LESSON_LOADED",
            "duration_s": round(buffer.duration, 3),
            "checkpoints": len(self._checkpoints),
        })

    def play(self, from_offset: float | None = None) -> None:
        """
        Start (or restart) narration from `from_offset`, or from the stored
        pause offset when omitted.
        """
        if self._buffer is None:
            raise NoLessonLoadedError("load() a lesson before play()")

        offset = self._pause_time if from_offset is None else self._clamp(from_offset)

        self._stop_main_source()
        self._pending = None

        source = self._context.create_buffer_source(self._buffer)
        source.on_ended = self._on_source_ended
        self._source = source

        self._pause_time = offset
        self._position = offset
        self._started_at = self._context.current_time
        source.start(0.0, offset)

        self._set_state(LessonState.TALKING)
        self._ensure_polling()

    def pause(self) -> None:
        """Freeze the cursor and stop the source. No-op unless talking."""
        if self._state is not LessonState.TALKING:
            return

        elapsed = self._context.current_time - self._started_at
        self._pause_time = self._clamp(self._pause_time + elapsed)
        self._position = self._pause_time
        self._stop_main_source()
        self._set_state(LessonState.PAUSED)

    def seek(self, offset: float) -> float:
        """
        Move the cursor to `offset` (clamped to [0, duration]).

        Restarts the source if talking; otherwise only the stored offset
        changes. Returns the clamped offset.
        """
        target = self._clamp(offset)
        self._position = target

        if self._state is LessonState.TALKING:
            self.play(target)
        else:
            self._pause_time = target
        return target

    def tick(self) -> Checkpoint | None:
        """
        Poll once. Returns the checkpoint surfaced by this tick, if any.

        At most one checkpoint is consumed per tick, even when several
        timestamps have already been passed.
        """
        if self._state is not LessonState.TALKING or self._buffer is None:
            return None

        position = self._live_position()
        self._position = position

        if self._checkpoints.due(position):
            return self._reach_checkpoint()
        if position >= self.duration:
            return self._finish_track()
        return None

    async def answer(self, text: str) -> bool:
        """
        Answer the pending checkpoint question.

        Plays the follow-up clip (if a follow-up collaborator is configured),
        then resumes narration, or fetches the next segment when the buffer
        is exhausted and a continuation collaborator is configured.

        Returns True if playback resumed, False if the call was ignored,
        failed, or was overtaken by load()/stop().

        When the follow-up or continuation fails, the lesson is left PAUSED
        at the checkpoint's pause offset with the question consumed; play()
        resumes narration from there.
        """
        checkpoint = self._pending
        if self._state is not LessonState.AWAITING_ANSWER or checkpoint is None:
            self._log({
                "event_type": "LESSON_ANSWER_IGNORED",
                "level": "DEBUG",
                "state": self._state.value,
            })
            return False

        generation = self._generation
        self._pending = None
        self._set_state(LessonState.RESPONDING)

        try:
            if self._follow_up is not None:
                pcm = await self._follow_up(checkpoint.question, text)
                if generation != self._generation:
                    return False
                if pcm:
                    await self._play_clip(
                        decode_pcm16(pcm, sample_rate_hz=self._clip_sample_rate_hz)
                    )
                if generation != self._generation:
                    return False

            if self._continuation is not None and self._buffer_exhausted():
                segment = await self._continuation(checkpoint, text)
                if generation != self._generation:
                    return False
                if segment is None:
                    self._finish_track()
                    return False
                self.load(segment.buffer, segment.checkpoints)
                self.play(0.0)
                return True

        except Exception as exc:  # pylint: disable=broad-exception-caught
            if generation != self._generation:
                return False
            self._stop_clip()
            self._log({
                "event_type": "LESSON_FOLLOW_UP_FAILED",
                "level": "ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            self._set_state(LessonState.PAUSED)
            return False

        self.play()
        return True

    def stop(self) -> None:
        """
        Stop-and-clear: silence everything, drop the lesson, return to idle.

        Safe to call at any time, including when nothing is playing.
        """
        self._generation += 1
        self._teardown()

        self._buffer = None
        self._checkpoints.clear()
        self._pending = None
        self._pause_time = 0.0
        self._position = 0.0
        self._set_state(LessonState.IDLE)

    # ------------------------------------------------------------------
    # Checkpoints / end of track
    # ------------------------------------------------------------------

    def _reach_checkpoint(self) -> Checkpoint:
        checkpoint = self._checkpoints.pop()
        self.pause()
        return self._surface(checkpoint)

    def _finish_track(self) -> Checkpoint | None:
        self._stop_main_source()
        duration = self.duration

        if self._checkpoints:
            # Checkpoint at/after the end still fires
            self._pause_time = duration
            self._position = duration
            return self._surface(self._checkpoints.pop())

        self._position = duration
        self._pause_time = 0.0
        self._set_state(LessonState.IDLE)
        self._log({"event_type": "LESSON_FINISHED", "duration_s": round(duration, 3)})
        return None

    def _surface(self, checkpoint: Checkpoint) -> Checkpoint:
        self._pending = checkpoint
        self._set_state(LessonState.AWAITING_ANSWER)
        self._log({
            "event_type": "LESSON_CHECKPOINT",
            "checkpoint_s": checkpoint.time_s,
            "position_s": round(self._position, 3),
            "remaining": len(self._checkpoints),
        })
        if self._on_checkpoint is not None:
            self._on_checkpoint(checkpoint)
        return checkpoint

    def _on_source_ended(self, source: BufferSource) -> None:
        if source is not self._source:
            return
        if self._state is not LessonState.TALKING:
            return
        self._position = self.duration
        self._finish_track()

    # ------------------------------------------------------------------
    # Follow-up clip
    # ------------------------------------------------------------------

    async def _play_clip(self, buffer: AudioBuffer) -> None:
        """Play a one-shot clip outside the checkpoint machinery and wait for it."""
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _ended(_: BufferSource) -> None:
            if not done.done():
                done.set_result(None)

        source = self._context.create_buffer_source(buffer)
        source.on_ended = _ended
        self._clip_source = source
        self._clip_done = done
        source.start()

        try:
            await done
        finally:
            if self._clip_source is source:
                self._clip_source = None
            self._clip_done = None

    def _stop_clip(self) -> None:
        source = self._clip_source
        self._clip_source = None
        if source is not None:
            source.stop()

        done = self._clip_done
        self._clip_done = None
        if done is not None and not done.done():
            done.set_result(None)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _ensure_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller drives tick()
            return
        self._poll_task = loop.create_task(self._poll())

    async def _poll(self) -> None:
        while self._state is LessonState.TALKING:
            self.tick()
            await asyncio.sleep(self._poll_interval_s)

    def _cancel_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _teardown(self) -> None:
        self._stop_main_source()
        self._stop_clip()
        self._cancel_polling()

    def _stop_main_source(self) -> None:
        source = self._source
        self._source = None
        if source is not None:
            source.stop()

    def _live_position(self) -> float:
        elapsed = self._context.current_time - self._started_at
        return self._clamp(self._pause_time + elapsed)

    def _buffer_exhausted(self) -> bool:
        return not self._checkpoints and self._pause_time >= self.duration

    def _clamp(self, offset: float) -> float:
        return min(max(0.0, offset), self.duration)

    def _set_state(self, state: LessonState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._log({
            "event_type": "LESSON_STATE",
            "level": "DEBUG",
            "from": previous.value,
            "to": state.value,
        })
        if self._on_state_change is not None:
            self._on_state_change(state)
