# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Optional

import pytest

from adapters.errors import UpstreamError
from audio.buffers import AudioBuffer
from audio.context import AudioContext
from lesson.checkpoints import Checkpoint, CheckpointQueue, sort_checkpoints
from lesson.scheduler import (
    LessonScheduler,
    LessonSegment,
    LessonState,
    NoLessonLoadedError,
)


SR = 24_000
STEP_S = 0.05


def silence(duration_s: float) -> AudioBuffer:
    return AudioBuffer.silence(duration_s, SR)


def run_for(ctx: AudioContext, scheduler: LessonScheduler, seconds: float) -> list[Checkpoint]:
    """Advance the device clock in poll-sized steps, ticking after each."""
    surfaced = []
    for _ in range(int(round(seconds / STEP_S))):
        ctx.advance(STEP_S)
        checkpoint = scheduler.tick()
        if checkpoint is not None:
            surfaced.append(checkpoint)
    return surfaced


def make(ctx: AudioContext, **kwargs) -> tuple[LessonScheduler, list[LessonState]]:
    states: list[LessonState] = []
    scheduler = LessonScheduler(ctx, on_state_change=states.append, **kwargs)
    return scheduler, states


# ---------------------------------------------------------------------
# Checkpoint queue
# ---------------------------------------------------------------------

def test_checkpoint_queue_is_fifo_and_never_resorted() -> None:
    queue = CheckpointQueue([Checkpoint(7.0, "b"), Checkpoint(3.0, "a")])

    assert queue.peek() == Checkpoint(7.0, "b")
    assert not queue.due(5.0)
    assert queue.pop().question == "b"
    assert queue.due(5.0)


def test_sort_checkpoints_is_stable_ascending() -> None:
    ordered = sort_checkpoints([Checkpoint(2.0, "x"), Checkpoint(1.0, "y"), Checkpoint(2.0, "z")])

    assert [c.question for c in ordered] == ["y", "x", "z"]


# ---------------------------------------------------------------------
# Checkpoint firing
# ---------------------------------------------------------------------

def test_two_checkpoints_fire_sequentially_once_each() -> None:
    ctx = AudioContext(SR)
    scheduler, states = make(ctx)
    scheduler.load(silence(10.0), [Checkpoint(3.0, "q3"), Checkpoint(7.0, "q7")])
    scheduler.play(0)

    first = run_for(ctx, scheduler, 10.0)

    assert [c.question for c in first] == ["q3"]
    assert scheduler.state is LessonState.AWAITING_ANSWER
    assert scheduler.pending_checkpoint == Checkpoint(3.0, "q3")
    assert scheduler.pause_time == pytest.approx(3.0, abs=STEP_S)

    assert asyncio.run(scheduler.answer("three")) is True
    assert scheduler.state is LessonState.TALKING

    second = run_for(ctx, scheduler, 10.0)
    assert [c.question for c in second] == ["q7"]

    assert asyncio.run(scheduler.answer("seven")) is True
    assert run_for(ctx, scheduler, 10.0) == []

    assert scheduler.state is LessonState.IDLE
    assert states.count(LessonState.AWAITING_ANSWER) == 2


def test_checkpoints_closer_than_one_tick_are_never_skipped() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(5.0), [Checkpoint(1.0, "a"), Checkpoint(1.01, "b")])
    scheduler.play(0)

    ctx.advance(1.1)
    assert scheduler.tick() == Checkpoint(1.0, "a")
    assert scheduler.remaining_checkpoints == 1

    # Resuming past "b" surfaces it on the very next poll, whether that is
    # the background poller or this tick()
    assert asyncio.run(scheduler.answer("x")) is True
    scheduler.tick()

    assert scheduler.state is LessonState.AWAITING_ANSWER
    assert scheduler.pending_checkpoint == Checkpoint(1.01, "b")
    assert scheduler.remaining_checkpoints == 0


def test_checkpoint_beyond_duration_fires_on_natural_end() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(2.0), [Checkpoint(5.0, "late")])
    scheduler.play(0)

    ctx.advance(2.0)

    assert scheduler.state is LessonState.AWAITING_ANSWER
    assert scheduler.pending_checkpoint == Checkpoint(5.0, "late")
    assert scheduler.position == pytest.approx(2.0)


# ---------------------------------------------------------------------
# Cursor: pause / play / seek
# ---------------------------------------------------------------------

def test_pause_is_idempotent_and_play_resumes_from_pause_offset() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(10.0))
    scheduler.play(0)

    ctx.advance(2.0)
    scheduler.pause()
    paused_at = scheduler.pause_time
    scheduler.pause()

    assert scheduler.state is LessonState.PAUSED
    assert scheduler.pause_time == paused_at == pytest.approx(2.0)

    scheduler.play()
    assert scheduler.position == pytest.approx(2.0)

    ctx.advance(1.0)
    assert scheduler.position == pytest.approx(3.0)


def test_pause_when_not_talking_is_a_noop() -> None:
    ctx = AudioContext(SR)
    scheduler, states = make(ctx)
    scheduler.load(silence(1.0))

    scheduler.pause()

    assert scheduler.state is LessonState.IDLE
    assert states == []


def test_seek_clamps_to_buffer_bounds() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(10.0))

    assert scheduler.seek(-5) == 0.0
    assert scheduler.seek(99) == 10.0
    assert scheduler.pause_time == 10.0
    assert scheduler.state is LessonState.IDLE


def test_seek_while_talking_restarts_from_the_new_offset() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(10.0))
    scheduler.play(0)
    ctx.advance(1.0)

    scheduler.seek(6.0)
    ctx.advance(0.5)

    # The replaced source's ended callback is stale and must not end the track
    assert scheduler.state is LessonState.TALKING
    assert scheduler.position == pytest.approx(6.5)


def test_play_before_load_raises() -> None:
    scheduler, _ = make(AudioContext(SR))

    with pytest.raises(NoLessonLoadedError):
        scheduler.play()


# ---------------------------------------------------------------------
# End of track
# ---------------------------------------------------------------------

def test_track_without_checkpoints_ends_idle_at_full_position() -> None:
    ctx = AudioContext(SR)
    scheduler, states = make(ctx)
    scheduler.load(silence(5.0), [])
    scheduler.play(0)

    ctx.advance(5.0)

    assert scheduler.state is LessonState.IDLE
    assert scheduler.position == 5.0
    assert scheduler.pause_time == 0.0
    assert states == [LessonState.TALKING, LessonState.IDLE]


def test_stop_clears_everything_and_is_safe_to_repeat() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.stop()

    scheduler.load(silence(5.0), [Checkpoint(1.0, "q")])
    scheduler.play(0)
    scheduler.stop()
    scheduler.stop()

    assert scheduler.state is LessonState.IDLE
    assert scheduler.remaining_checkpoints == 0
    assert scheduler.duration == 0.0
    assert ctx.active_source_count == 0


# ---------------------------------------------------------------------
# Answers: follow-up clip and continuation
# ---------------------------------------------------------------------

async def _drive(ctx: AudioContext, task: "asyncio.Task[bool]", limit_s: float = 5.0) -> bool:
    """Render the clock while `task` runs (stands in for the speaker sink)."""
    elapsed = 0.0
    while not task.done() and elapsed < limit_s:
        await asyncio.sleep(0)
        ctx.advance(STEP_S)
        elapsed += STEP_S
    return await task


def test_answer_plays_follow_up_clip_then_resumes() -> None:
    calls: list[tuple[str, str]] = []

    async def follow_up(question: str, answer: str) -> bytes:
        calls.append((question, answer))
        return b"\x00\x00" * (SR // 2)  # 0.5 s

    async def scenario() -> tuple[bool, float]:
        ctx = AudioContext(SR)
        scheduler, states = make(ctx, follow_up=follow_up)
        scheduler.load(silence(10.0), [Checkpoint(0.0, "ready?")])
        scheduler.play(0)
        scheduler.tick()
        assert scheduler.state is LessonState.AWAITING_ANSWER

        clock_before = ctx.current_time
        resumed = await _drive(ctx, asyncio.create_task(scheduler.answer("yes")))
        assert LessonState.RESPONDING in states
        assert scheduler.state is LessonState.TALKING
        scheduler.stop()
        return resumed, ctx.current_time - clock_before

    resumed, clip_time = asyncio.run(scenario())

    assert resumed is True
    assert calls == [("ready?", "yes")]
    assert clip_time >= 0.5


def test_answer_outside_awaiting_answer_is_ignored() -> None:
    ctx = AudioContext(SR)
    scheduler, _ = make(ctx)
    scheduler.load(silence(1.0))

    assert asyncio.run(scheduler.answer("hello")) is False
    assert scheduler.state is LessonState.IDLE


def test_failed_follow_up_leaves_lesson_paused() -> None:
    async def follow_up(question: str, answer: str) -> bytes:
        raise UpstreamError("follow_up", "boom")

    ctx = AudioContext(SR)
    scheduler, _ = make(ctx, follow_up=follow_up)
    scheduler.load(silence(10.0), [Checkpoint(1.0, "q")])
    scheduler.play(0)
    run_for(ctx, scheduler, 1.5)

    assert asyncio.run(scheduler.answer("a")) is False
    assert scheduler.state is LessonState.PAUSED
    assert scheduler.pending_checkpoint is None
    assert scheduler.remaining_checkpoints == 0

    scheduler.play()
    assert scheduler.state is LessonState.TALKING
    assert scheduler.position == pytest.approx(1.0, abs=STEP_S)


def test_stop_during_follow_up_prevents_resume() -> None:
    async def scenario() -> tuple[bool, LessonState]:
        gate = asyncio.Event()

        async def follow_up(question: str, answer: str) -> bytes:
            await gate.wait()
            return b"\x00\x00" * 100

        ctx = AudioContext(SR)
        scheduler, _ = make(ctx, follow_up=follow_up)
        scheduler.load(silence(10.0), [Checkpoint(0.0, "q")])
        scheduler.play(0)
        scheduler.tick()

        task = asyncio.create_task(scheduler.answer("a"))
        await asyncio.sleep(0)
        scheduler.stop()
        gate.set()
        return await task, scheduler.state

    resumed, state = asyncio.run(scenario())

    assert resumed is False
    assert state is LessonState.IDLE


def test_continuation_loads_next_segment_when_buffer_is_exhausted() -> None:
    requested: list[tuple[Checkpoint, str]] = []

    async def continuation(checkpoint: Checkpoint, answer: str) -> Optional[LessonSegment]:
        requested.append((checkpoint, answer))
        return LessonSegment(buffer=silence(3.0), checkpoints=(Checkpoint(1.0, "next"),))

    ctx = AudioContext(SR)
    scheduler, _ = make(ctx, continuation=continuation)
    scheduler.load(silence(1.0), [Checkpoint(1.0, "end")])
    scheduler.play(0)
    ctx.advance(1.0)
    assert scheduler.state is LessonState.AWAITING_ANSWER

    assert asyncio.run(scheduler.answer("done")) is True

    assert requested == [(Checkpoint(1.0, "end"), "done")]
    assert scheduler.duration == pytest.approx(3.0)
    assert scheduler.remaining_checkpoints == 1
    assert scheduler.state is LessonState.TALKING
    assert scheduler.position == pytest.approx(0.0)


def test_continuation_returning_none_finishes_the_lesson() -> None:
    async def continuation(checkpoint: Checkpoint, answer: str) -> Optional[LessonSegment]:
        return None

    ctx = AudioContext(SR)
    scheduler, _ = make(ctx, continuation=continuation)
    scheduler.load(silence(1.0), [Checkpoint(2.0, "end")])
    scheduler.play(0)
    ctx.advance(1.0)

    assert asyncio.run(scheduler.answer("bye")) is False
    assert scheduler.state is LessonState.IDLE
