"""
Gemini Live bidirectional transport (google-genai live sessions).

Role in the system:
- Opens one live session per call through client.aio.live.connect, with
  the AUDIO response modality, a prebuilt voice, the tutor persona and
  output transcription enabled. The SDK completes the setup handshake
  before handing the session back, so a returned session is open.
- Sends uplink MediaFrames through send_realtime_input (PCM16 @ 16 kHz).
- Converts LiveServerMessages into LiveMessages (audio parts,
  interruption, turn completion, output transcription) and goAway.

Architectural constraints:
- No capture, playback, or session state machine here.
- No retries or reconnects; failures raise LiveConnectionError.
- The SDK speaks WebSocket underneath and lets the websockets close
  exceptions through; they are mapped here.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from adapters.live.base import LiveConnectionError, LiveMessage, LiveTransport
from audio.buffers import MediaFrame
from audio.pcm import decode_base64, encode_base64
from config import AppConfig
from constants import LIVE_CONNECT_TIMEOUT_S
from observability.logger import log_event


# ------------------------------------------------------------------
# Conversion helpers (pure)
# ------------------------------------------------------------------

def build_connect_config(*, voice_name: str, system_instruction: str) -> types.LiveConnectConfig:
    """Session configuration sent with the setup handshake."""
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name),
            ),
        ),
        system_instruction=(
            types.Content(parts=[types.Part(text=system_instruction)])
            if system_instruction
            else None
        ),
        output_audio_transcription=types.AudioTranscriptionConfig(),
    )


def media_blob(frame: MediaFrame) -> types.Blob:
    """Realtime audio input for one uplink frame."""
    return types.Blob(data=decode_base64(frame.data), mime_type=frame.mime_type)


def parse_server_message(message: types.LiveServerMessage) -> list[LiveMessage]:
    """
    Convert one server message into LiveMessages.

    Order: goAway, interruption, one message per audio part, then a
    single transcript / turn-completion message.
    """
    out: list[LiveMessage] = []

    if message.go_away is not None:
        out.append(LiveMessage(go_away=True))

    content = message.server_content
    if content is None:
        return out

    if content.interrupted:
        out.append(LiveMessage(interrupted=True))

    parts = content.model_turn.parts if content.model_turn is not None else None
    for part in parts or []:
        inline = part.inline_data
        if inline is None or not inline.data:
            continue
        if inline.mime_type and not inline.mime_type.startswith("audio/"):
            continue
        payload = inline.data
        # Older SDK builds hand inline data back as base64 text
        out.append(LiveMessage(audio_b64=payload if isinstance(payload, str) else encode_base64(payload)))

    transcription = content.output_transcription
    transcript = transcription.text if transcription is not None else None
    turn_complete = bool(content.turn_complete)

    if transcript or turn_complete:
        out.append(LiveMessage(transcript=transcript or None, turn_complete=turn_complete))

    return out


# ------------------------------------------------------------------
# Transport
# ------------------------------------------------------------------

class GeminiLiveTransport(LiveTransport):
    """
    One Gemini Live session.

    Design:
    - connect() enters the SDK's session context and returns once the
      server acknowledged the setup.
    - receive() is a single-consumer async iterator. The SDK ends its own
      iterator at every turn boundary; this one keeps going until the
      session closes.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        voice_name: str,
        system_instruction: str,
        session_id: str | None = None,
        connect_timeout_s: float = LIVE_CONNECT_TIMEOUT_S,
    ) -> None:
        """
        Args:
            client:
                genai.Client (or anything exposing aio.live.connect).
        """
        self._client = client
        self._model = model
        self._voice_name = voice_name
        self._system_instruction = system_instruction
        self._session_id = session_id
        self._connect_timeout_s = connect_timeout_s

        self._stack: AsyncExitStack | None = None
        self._session: Any = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        system_instruction: str,
        client: Any = None,
        session_id: str | None = None,
    ) -> GeminiLiveTransport:
        if client is None:
            client = genai.Client(api_key=config.require_api_key())
        return cls(
            client=client,
            model=config.live_model,
            voice_name=config.voice_name,
            system_instruction=system_instruction,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Public API (LiveTransport contract)
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._session is not None:
            return

        config = build_connect_config(
            voice_name=self._voice_name,
            system_instruction=self._system_instruction,
        )
        stack = AsyncExitStack()
        try:
            session = await asyncio.wait_for(
                stack.enter_async_context(
                    self._client.aio.live.connect(model=self._model, config=config)
                ),
                timeout=self._connect_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            await self._close_stack(stack)
            raise LiveConnectionError(
                f"live_connect_timeout after {self._connect_timeout_s}s"
            ) from exc
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._close_stack(stack)
            raise LiveConnectionError(f"live_connect_failed: {exc!r}") from exc

        self._stack = stack
        self._session = session
        log_event({
            "event_type": "LIVE_SESSION_OPEN",
            "session_id": self._session_id,
            "model": self._model,
            "voice": self._voice_name,
        })

    async def send_media(self, frame: MediaFrame) -> None:
        session = self._session
        if session is None:
            raise LiveConnectionError("live session is not open")
        try:
            await session.send_realtime_input(audio=media_blob(frame))
        except ConnectionClosed as exc:
            raise LiveConnectionError(f"live_send_failed: {exc!r}") from exc

    async def receive(self) -> AsyncIterator[LiveMessage]:
        session = self._session
        if session is None:
            return

        try:
            while True:
                try:
                    async for message in session.receive():
                        for parsed in parse_server_message(message):
                            yield parsed
                except ValueError as exc:
                    # The SDK drops an undecodable frame by raising; the
                    # connection itself is still usable.
                    log_event({
                        "event_type": "LIVE_BAD_MESSAGE",
                        "level": "WARNING",
                        "session_id": self._session_id,
                        "error": str(exc)[:200],
                    })
        except ConnectionClosedOK:
            return
        except ConnectionClosed as exc:
            raise LiveConnectionError(f"live_recv_failed: {exc!r}") from exc

    async def close(self) -> None:
        stack = self._stack
        self._stack = None
        self._session = None
        if stack is not None:
            await self._close_stack(stack)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _close_stack(self, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "LIVE_CLOSE_ERROR",
                "level": "DEBUG",
                "session_id": self._session_id,
                "error": repr(exc),
            })
