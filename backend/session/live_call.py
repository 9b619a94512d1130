"""
Live duplex voice session controller.

Responsibilities:
- Open the microphone (16 kHz, fixed 4096-sample frames).
- Open the remote live session (persona + voice) and wait for it to be ready.
- Uplink: every captured frame -> PCM16 -> base64 -> MediaFrame, sent as
  fast as it is produced (no backpressure).
- Downlink: inbound audio -> PCM decode @ 24 kHz -> gapless queue.
  Inbound interruption -> queue.interrupt().
- One teardown path (stop) for user stop, remote close and errors.

Non-responsibilities:
- No reconnect. A failed or closed session ends in IDLE with last_error set
  and must be restarted explicitly.
- No ownership of the output AudioContext (shared, owned by the gateway).
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from adapters.live.base import LiveMessage, LiveTransport
from audio.buffers import MediaFrame
from audio.context import AudioContext
from audio.devices import AudioCapture, MicrophoneCapture
from audio.gapless import GaplessPlaybackQueue
from audio.pcm import FormatError, decode_base64_pcm16, encode_base64, float32_to_pcm16le
from constants import LIVE_INPUT_MIME_TYPE, OUTPUT_SAMPLE_RATE_HZ
from observability.logger import bind
from session.connection_status import LiveSessionState


TransportFactory = Callable[[], LiveTransport]
CaptureFactory = Callable[[], AudioCapture]


class LiveVoiceSession:
    """
    One live call: microphone in, model speech out.

    All methods run on the event loop. start()/stop() may be called in any
    order and any number of times.
    """

    def __init__(
        self,
        context: AudioContext,
        *,
        transport_factory: TransportFactory,
        capture_factory: CaptureFactory = MicrophoneCapture,
        session_id: Optional[str] = None,
        on_state_change: Optional[Callable[[LiveSessionState], None]] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._context = context
        self._transport_factory = transport_factory
        self._capture_factory = capture_factory
        self._session_id = session_id
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._log = bind(component="live", session_id=session_id)

        self._state = LiveSessionState.IDLE
        self._capture: AudioCapture | None = None
        self._transport: LiveTransport | None = None
        self._queue: GaplessPlaybackQueue | None = None
        self._tasks: list[asyncio.Task[None]] = []

        self.last_error: BaseException | None = None
        self.frames_sent: int = 0
        self.chunks_received: int = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> LiveSessionState:
        return self._state

    @property
    def queue(self) -> GaplessPlaybackQueue | None:
        return self._queue

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Open microphone and remote session, then start both pumps.

        Raises:
            MicrophonePermissionError: microphone denied or unavailable.
            LiveConnectionError: the remote session could not be opened.
        Anything else raised while building or opening the capture or the
        transport is re-raised as is. In every case the session is back in
        IDLE with last_error set and the microphone released.
        """
        if self._state is not LiveSessionState.IDLE:
            self._log({"event_type": "LIVE_START_IGNORED", "state": self._state.value})
            return

        self.last_error = None
        self.frames_sent = 0
        self.chunks_received = 0
        self._set_state(LiveSessionState.CONNECTING)

        try:
            capture = self._capture_factory()
            self._capture = capture
            await capture.open()

            transport = self._transport_factory()
            self._transport = transport
            await transport.connect()
        except asyncio.CancelledError:
            await self.stop()
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(exc)
            raise

        if self._state is not LiveSessionState.CONNECTING:
            # stop() ran while we were waiting for the handshake
            if self._transport is transport:
                self._transport = None
            await self._close_transport(transport)
            return

        self._queue = GaplessPlaybackQueue(self._context, session_id=self._session_id)
        self._set_state(LiveSessionState.OPEN)

        self._tasks = [
            asyncio.create_task(self._pump_capture(capture, transport), name="live-uplink"),
            asyncio.create_task(self._pump_inbound(transport), name="live-downlink"),
        ]

    async def stop(self) -> None:
        """
        Tear everything down. Idempotent; safe when never started.

        Safe to call from inside one of the pumps: the calling task is not
        cancelled.
        """
        if self._state in (LiveSessionState.IDLE, LiveSessionState.CLOSING):
            return

        self._set_state(LiveSessionState.CLOSING)

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        self._tasks = []

        capture = self._capture
        self._capture = None
        if capture is not None:
            try:
                capture.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log({
                    "event_type": "LIVE_CAPTURE_CLOSE_ERROR",
                    "level": "WARNING",
                    "error": repr(exc),
                })

        transport = self._transport
        self._transport = None
        if transport is not None:
            await self._close_transport(transport)

        queue = self._queue
        self._queue = None
        if queue is not None:
            queue.stop()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._set_state(LiveSessionState.IDLE)
        self._log({
            "event_type": "LIVE_SESSION_STOPPED",
            "frames_sent": self.frames_sent,
            "chunks_received": self.chunks_received,
            "error": repr(self.last_error) if self.last_error else None,
        })

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _pump_capture(self, capture: AudioCapture, transport: LiveTransport) -> None:
        try:
            async for samples in capture.frames():
                frame = MediaFrame(
                    data=encode_base64(float32_to_pcm16le(samples)),
                    mime_type=LIVE_INPUT_MIME_TYPE,
                )
                await transport.send_media(frame)
                self.frames_sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(exc)

    async def _pump_inbound(self, transport: LiveTransport) -> None:
        try:
            async for message in transport.receive():
                self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(exc)
            return

        self._log({"event_type": "LIVE_REMOTE_CLOSED"})
        await self.stop()

    def _handle_message(self, message: LiveMessage) -> None:
        queue = self._queue
        if queue is None:
            return

        if message.interrupted:
            dropped = queue.interrupt()
            self._log({"event_type": "LIVE_INTERRUPTED", "dropped_sources": dropped})

        if message.audio_b64:
            try:
                buffer = decode_base64_pcm16(message.audio_b64, sample_rate_hz=OUTPUT_SAMPLE_RATE_HZ)
            except FormatError as exc:
                self._log({
                    "event_type": "LIVE_BAD_AUDIO_CHUNK",
                    "level": "WARNING",
                    "error": repr(exc),
                })
            else:
                queue.enqueue(buffer)
                self.chunks_received += 1

        if message.transcript and self._on_transcript is not None:
            self._on_transcript(message.transcript)

        if message.go_away:
            self._log({"event_type": "LIVE_GO_AWAY", "level": "WARNING"})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fail(self, exc: BaseException) -> None:
        self.last_error = exc
        self._log({
            "event_type": "LIVE_SESSION_ERROR",
            "level": "ERROR",
            "error_type": type(exc).__name__,
            "error": repr(exc),
        })
        await self.stop()

    async def _close_transport(self, transport: LiveTransport) -> None:
        try:
            await transport.close()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log({
                "event_type": "LIVE_TRANSPORT_CLOSE_ERROR",
                "level": "WARNING",
                "error": repr(exc),
            })

    def _set_state(self, state: LiveSessionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._log({
            "event_type": "LIVE_STATE_CHANGED",
            "from": previous.value,
            "to": state.value,
        })
        if self._on_state_change is not None:
            self._on_state_change(state)
