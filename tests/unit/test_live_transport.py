# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import contextlib
from types import SimpleNamespace
from typing import Any, AsyncIterator, Optional

import pytest
from google.genai import types
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from adapters.live.base import LiveConnectionError, LiveMessage
from adapters.live.gemini_live import (
    GeminiLiveTransport,
    build_connect_config,
    media_blob,
    parse_server_message,
)
from audio.buffers import MediaFrame
from constants import LIVE_INPUT_MIME_TYPE


def audio_part(data: bytes, mime_type: str = "audio/pcm;rate=24000") -> types.Part:
    return types.Part(inline_data=types.Blob(data=data, mime_type=mime_type))


def server_content(**kwargs: Any) -> types.LiveServerMessage:
    return types.LiveServerMessage(server_content=types.LiveServerContent(**kwargs))


# ---------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------

def test_connect_config_shape() -> None:
    config = build_connect_config(voice_name="Kore", system_instruction="Be kind")

    assert config.response_modalities == [types.Modality.AUDIO]
    assert config.speech_config.voice_config.prebuilt_voice_config.voice_name == "Kore"
    assert config.system_instruction.parts[0].text == "Be kind"
    assert config.output_audio_transcription is not None


def test_connect_config_without_persona() -> None:
    assert build_connect_config(voice_name="Kore", system_instruction="").system_instruction is None


def test_media_blob_carries_raw_pcm() -> None:
    blob = media_blob(MediaFrame(data="AQID", mime_type=LIVE_INPUT_MIME_TYPE))

    assert blob.data == b"\x01\x02\x03"
    assert blob.mime_type == "audio/pcm;rate=16000"


def test_server_content_parsing_order() -> None:
    message = server_content(
        interrupted=True,
        model_turn=types.Content(
            role="model",
            parts=[
                audio_part(b"AAA"),
                types.Part(text="thinking..."),
                audio_part(b"xxxx", mime_type="image/png"),
                audio_part(b"BBB"),
            ],
        ),
        output_transcription=types.Transcription(text="Namaste"),
        turn_complete=True,
    )

    assert parse_server_message(message) == [
        LiveMessage(interrupted=True),
        LiveMessage(audio_b64="QUFB"),
        LiveMessage(audio_b64="QkJC"),
        LiveMessage(transcript="Namaste", turn_complete=True),
    ]


def test_go_away_and_empty_messages() -> None:
    go_away = types.LiveServerMessage(go_away=types.LiveServerGoAway())

    assert parse_server_message(go_away) == [LiveMessage(go_away=True)]
    assert parse_server_message(types.LiveServerMessage()) == []
    assert parse_server_message(server_content()) == []


# ---------------------------------------------------------------------
# Against a fake SDK client
# ---------------------------------------------------------------------

def closed_ok() -> ConnectionClosedOK:
    return ConnectionClosedOK(Close(1000, "bye"), Close(1000, "bye"), True)


class FakeLiveSession:
    """Mimics the SDK session: receive() stops after each completed turn."""

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.sent: list[types.Blob] = []

    async def send_realtime_input(self, *, audio: types.Blob) -> None:
        self.sent.append(audio)

    async def receive(self) -> AsyncIterator[types.LiveServerMessage]:
        while True:
            if not self._script:
                raise closed_ok()
            item = self._script.pop(0)
            if isinstance(item, Exception):
                raise item
            yield item
            if item.server_content is not None and item.server_content.turn_complete:
                return


class FakeLive:
    def __init__(
        self,
        session: FakeLiveSession,
        *,
        connect_error: Optional[Exception] = None,
        hang: bool = False,
    ) -> None:
        self._session = session
        self._connect_error = connect_error
        self._hang = hang
        self.requests: list[dict[str, Any]] = []
        self.exited = 0

    @contextlib.asynccontextmanager
    async def connect(self, *, model: str, config: types.LiveConnectConfig) -> AsyncIterator[FakeLiveSession]:
        self.requests.append({"model": model, "config": config})
        if self._hang:
            await asyncio.Event().wait()
        if self._connect_error is not None:
            raise self._connect_error
        try:
            yield self._session
        finally:
            self.exited += 1


def make_transport(live: FakeLive, **kwargs: Any) -> GeminiLiveTransport:
    return GeminiLiveTransport(
        client=SimpleNamespace(aio=SimpleNamespace(live=live)),
        model="gemini-live",
        voice_name="Kore",
        system_instruction="persona",
        session_id="sess_live",
        **kwargs,
    )


def test_session_sends_frames_and_reads_across_turns(captured_events: list[dict[str, Any]]) -> None:
    session = FakeLiveSession([
        server_content(model_turn=types.Content(parts=[audio_part(b"AAA")])),
        server_content(turn_complete=True),
        ValueError("Failed to parse response"),
        server_content(output_transcription=types.Transcription(text="Shabash")),
    ])
    live = FakeLive(session)
    transport = make_transport(live)

    async def scenario() -> list[LiveMessage]:
        await transport.connect()
        await transport.send_media(MediaFrame(data="AQID", mime_type=LIVE_INPUT_MIME_TYPE))
        messages = [message async for message in transport.receive()]
        await transport.close()
        return messages

    messages = asyncio.run(scenario())

    assert live.requests[0]["model"] == "gemini-live"
    assert live.requests[0]["config"].system_instruction.parts[0].text == "persona"
    assert [blob.data for blob in session.sent] == [b"\x01\x02\x03"]
    assert messages == [
        LiveMessage(audio_b64="QUFB"),
        LiveMessage(turn_complete=True),
        LiveMessage(transcript="Shabash"),
    ]
    assert any(e["event_type"] == "LIVE_BAD_MESSAGE" for e in captured_events)
    assert live.exited == 1


def test_connect_failure_raises_connection_error() -> None:
    live = FakeLive(FakeLiveSession([]), connect_error=OSError("refused"))

    with pytest.raises(LiveConnectionError, match="live_connect_failed"):
        asyncio.run(make_transport(live).connect())


def test_handshake_timeout_raises_connection_error() -> None:
    live = FakeLive(FakeLiveSession([]), hang=True)

    with pytest.raises(LiveConnectionError, match="timeout"):
        asyncio.run(make_transport(live, connect_timeout_s=0.01).connect())


def test_abnormal_close_while_receiving_raises() -> None:
    error = ConnectionClosedError(Close(1011, "internal"), None)
    transport = make_transport(FakeLive(FakeLiveSession([error])))

    async def scenario() -> None:
        await transport.connect()
        async for _ in transport.receive():
            pass

    with pytest.raises(LiveConnectionError, match="live_recv_failed"):
        asyncio.run(scenario())


def test_close_is_idempotent() -> None:
    live = FakeLive(FakeLiveSession([]))
    transport = make_transport(live)

    async def scenario() -> None:
        await transport.connect()
        await transport.close()
        await transport.close()

    asyncio.run(scenario())

    assert live.exited == 1


def test_send_before_connect_raises() -> None:
    transport = make_transport(FakeLive(FakeLiveSession([])))

    with pytest.raises(LiveConnectionError):
        asyncio.run(transport.send_media(MediaFrame(data="", mime_type=LIVE_INPUT_MIME_TYPE)))
