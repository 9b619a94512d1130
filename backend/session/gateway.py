"""
Tutor gateway.

Responsibilities:
- Owns the single shared output AudioContext (24 kHz) and, when given a
  sink factory, the speaker sink that renders it
- Owns the chat ConversationContext for this session
- Builds lesson and live-call pipelines from the provider adapters
- Enforces that at most ONE playback/capture pipeline (lesson or call) is
  active: starting either tears down the other first
- Logs pipeline failures; a failed start leaves no pipeline active

NOT responsible for:
- Playback timing or checkpoint logic (LessonScheduler)
- Live session state machine (LiveVoiceSession)
- Provider wire formats (adapters)
- Presentation (server / cli)
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from adapters.errors import UpstreamError
from adapters.live.base import LiveTransport
from adapters.live.gemini_live import GeminiLiveTransport
from adapters.llm.base import TutorModel
from adapters.llm.parsing import LessonFormatError, TutorReply
from adapters.llm.prompts import LIVE_PERSONA_V1
from adapters.tts.base import SpeechSynthesizer
from audio.buffers import AudioBuffer
from audio.context import AudioContext, BufferSource
from audio.devices import MicrophoneCapture, SpeakerSink
from audio.pcm import FormatError, decode_pcm16
from config import AppConfig
from constants import OUTPUT_SAMPLE_RATE_HZ
from context.conversation import Attachment, ConversationContext
from lesson.checkpoints import Checkpoint
from lesson.scheduler import ContinuationFn, LessonScheduler, LessonSegment, LessonState
from observability.logger import bind
from session.connection_status import LiveSessionState
from session.live_call import CaptureFactory, LiveVoiceSession


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class Pipeline(str, Enum):
    """Which audio pipeline currently owns the output context."""

    NONE = "none"
    LESSON = "lesson"
    CALL = "call"


SinkFactory = Callable[[AudioContext], SpeakerSink]
LiveTransportFactory = Callable[[], LiveTransport]


# ------------------------------------------------------------------
# TutorGateway
# ------------------------------------------------------------------

class TutorGateway:
    """
    One gateway == one tutoring session (one learner).

    All methods run on the event loop.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        model: TutorModel,
        speech: SpeechSynthesizer,
        live_transport_factory: Optional[LiveTransportFactory] = None,
        capture_factory: CaptureFactory = MicrophoneCapture,
        sink_factory: Optional[SinkFactory] = None,
        context: Optional[AudioContext] = None,
        session_id: Optional[str] = None,
        on_checkpoint: Optional[Callable[[Checkpoint], None]] = None,
        on_lesson_state: Optional[Callable[[LessonState], None]] = None,
        on_call_state: Optional[Callable[[LiveSessionState], None]] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._config = config
        self._model = model
        self._speech = speech
        self._live_transport_factory = live_transport_factory or self._default_live_transport
        self._capture_factory = capture_factory
        self._sink_factory = sink_factory

        self.session_id = session_id or _new_session_id()
        self._log = bind(component="gateway", session_id=self.session_id)

        self._on_checkpoint = on_checkpoint
        self._on_lesson_state = on_lesson_state
        self._on_call_state = on_call_state
        self._on_transcript = on_transcript

        self.context = context or AudioContext(OUTPUT_SAMPLE_RATE_HZ)
        self.conversation = ConversationContext(session_id=self.session_id)

        self._sink: SpeakerSink | None = None
        self._lesson: LessonScheduler | None = None
        self._call: LiveVoiceSession | None = None
        # Bumped by stop_all(); a start that awaited across a bump is abandoned
        self._generation = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def lesson(self) -> LessonScheduler | None:
        return self._lesson

    @property
    def call(self) -> LiveVoiceSession | None:
        return self._call

    @property
    def active_pipeline(self) -> Pipeline:
        if self._call is not None and self._call.state is not LiveSessionState.IDLE:
            return Pipeline.CALL
        if self._lesson is not None:
            return Pipeline.LESSON
        return Pipeline.NONE

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(self, text: str, attachment: Attachment | None = None) -> TutorReply:
        """
        One chat turn. History is only updated when the reply succeeds.

        Raises:
            UpstreamError, LessonFormatError
        """
        try:
            reply = await self._model.chat(
                text, attachment=attachment, history=self.conversation.turns
            )
        except (UpstreamError, LessonFormatError) as exc:
            self._log({
                "event_type": "CHAT_FAILED",
                "level": "ERROR",
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            raise

        self.conversation.add_user_turn(text)
        self.conversation.add_model_turn(reply.text)
        return reply

    async def synthesize(self, ssml: str) -> AudioBuffer:
        """Speech for one script, decoded at the output rate."""
        pcm = await self._speech.synthesize(ssml)
        return decode_pcm16(pcm, sample_rate_hz=OUTPUT_SAMPLE_RATE_HZ)

    async def speak(self, ssml: str) -> float:
        """
        Synthesize one script and play it to completion as a one-shot.

        Any active pipeline is stopped first. Returns the clip duration.
        """
        await self.stop_all()
        buffer = await self.synthesize(ssml)
        self._ensure_output()

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _ended(_: BufferSource) -> None:
            if not done.done():
                done.set_result(None)

        source = self.context.create_buffer_source(buffer)
        source.on_ended = _ended
        source.start()
        await done
        return buffer.duration

    # ------------------------------------------------------------------
    # Lesson pipeline
    # ------------------------------------------------------------------

    async def start_lesson(self, topic: str, *, segmented: bool = False) -> LessonScheduler | None:
        """
        Generate, synthesize and start an interactive lesson.

        Returns None if another start/stop happened while generating.

        Raises:
            UpstreamError, FormatError
        """
        await self.stop_all()
        generation = self._generation

        try:
            lesson = await self._model.interactive_lesson(topic)
            buffer = await self.synthesize(lesson.voice_script_ssml)
        except (UpstreamError, FormatError) as exc:
            self._log({
                "event_type": "LESSON_START_FAILED",
                "level": "ERROR",
                "topic": topic,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            raise

        if generation != self._generation:
            self._log({"event_type": "LESSON_START_ABANDONED", "topic": topic})
            return None

        self._ensure_output()
        scheduler = LessonScheduler(
            self.context,
            follow_up=self._follow_up_clip,
            continuation=self._continuation(topic) if segmented else None,
            on_state_change=self._on_lesson_state,
            on_checkpoint=self._on_checkpoint,
            session_id=self.session_id,
        )
        scheduler.load(buffer, lesson.checkpoints)
        self._lesson = scheduler

        self._log({
            "event_type": "LESSON_STARTED",
            "topic": topic,
            "duration_s": round(buffer.duration, 3),
            "checkpoints": len(lesson.checkpoints),
            "segmented": segmented,
        })
        scheduler.play(0.0)
        return scheduler

    async def answer(self, text: str) -> bool:
        """Forward a checkpoint answer to the active lesson."""
        if self._lesson is None:
            return False
        return await self._lesson.answer(text)

    async def _follow_up_clip(self, question: str, answer: str) -> bytes:
        script = await self._model.follow_up_script(question, answer)
        return await self._speech.synthesize(script)

    def _continuation(self, topic: str) -> ContinuationFn:
        async def _next_segment(checkpoint: Checkpoint, answer: str) -> LessonSegment | None:
            segment = await self._model.continue_lesson(topic, checkpoint.question, answer)
            buffer = await self.synthesize(segment.voice_script_ssml)
            return LessonSegment(buffer=buffer, checkpoints=segment.checkpoints)

        return _next_segment

    # ------------------------------------------------------------------
    # Live call pipeline
    # ------------------------------------------------------------------

    async def start_call(self) -> LiveVoiceSession:
        """
        Start a live voice call, stopping any lesson first.

        Raises:
            MicrophonePermissionError, LiveConnectionError, or whatever the
            transport factory raises (e.g. a missing API key). The call is
            discarded in every case.
        """
        await self.stop_all()
        self._ensure_output()

        call = LiveVoiceSession(
            self.context,
            transport_factory=self._live_transport_factory,
            capture_factory=self._capture_factory,
            session_id=self.session_id,
            on_state_change=self._on_call_state,
            on_transcript=self._on_transcript,
        )
        self._call = call
        try:
            await call.start()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._call = None
            self._log({
                "event_type": "CALL_START_FAILED",
                "level": "ERROR",
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            raise
        return call

    def _default_live_transport(self) -> LiveTransport:
        return GeminiLiveTransport.from_config(
            self._config,
            system_instruction=LIVE_PERSONA_V1,
            session_id=self.session_id,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def stop_all(self) -> None:
        """Tear down the active pipeline (if any). Idempotent."""
        self._generation += 1

        lesson = self._lesson
        self._lesson = None
        if lesson is not None:
            lesson.stop()
            self._log({"event_type": "LESSON_STOPPED"})

        call = self._call
        self._call = None
        if call is not None:
            await call.stop()

        # One-shot clips (speak) are not owned by any pipeline
        self.context.stop_all()

    async def close(self) -> None:
        """Stop everything and release the output device and context."""
        await self.stop_all()
        sink = self._sink
        self._sink = None
        if sink is not None:
            sink.close()
        self.context.close()

    def _ensure_output(self) -> None:
        if self._sink is not None or self._sink_factory is None:
            return
        sink = self._sink_factory(self.context)
        sink.start()
        self._sink = sink
