"""Gemini TTS adapter (google-genai, AUDIO response modality)."""
from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Any

from google import genai
from google.genai import types

from adapters.errors import UpstreamError
from adapters.tts.base import SpeechSynthesizer
from config import AppConfig
from constants import UPSTREAM_TIMEOUT_S
from observability.metrics import timed


class GeminiSpeechSynthesizer(SpeechSynthesizer):
    """
    Gemini speech synthesis.

    The model returns raw PCM16 mono @ 24 kHz as inline data on the first
    candidate part. Older SDK builds hand it back base64-encoded, newer ones
    as bytes; both are accepted.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        voice: str = "Kore",
        timeout_s: float = UPSTREAM_TIMEOUT_S,
        session_id: str | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._voice = voice
        self._timeout_s = timeout_s
        self._session_id = session_id

    @classmethod
    def from_config(cls, config: AppConfig, *, client: Any = None) -> GeminiSpeechSynthesizer:
        if client is None:
            client = genai.Client(api_key=config.require_api_key())
        return cls(
            client=client,
            model=config.tts_model,
            voice=config.voice_name,
            timeout_s=config.upstream_timeout_s,
        )

    async def synthesize(self, ssml: str, *, voice: str | None = None) -> bytes:
        if not ssml or not ssml.strip():
            raise ValueError("ssml must be non-empty")

        voice_name = voice or self._voice
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name),
                ),
            ),
        )

        with timed(
            "gemini_tts",
            session_id=self._session_id,
            details={"model": self._model, "voice": voice_name, "chars": len(ssml)},
        ) as extra:
            try:
                response = await asyncio.wait_for(
                    self._client.aio.models.generate_content(
                        model=self._model,
                        contents=ssml,
                        config=config,
                    ),
                    timeout=self._timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise UpstreamError("tts", f"timeout after {self._timeout_s}s") from exc
            except Exception as exc:  # pylint: disable=broad-exception-caught
                raise UpstreamError("tts", repr(exc)) from exc

            pcm = _extract_audio(response)
            extra["bytes"] = len(pcm)
            return pcm


def _extract_audio(response: Any) -> bytes:
    try:
        data = response.candidates[0].content.parts[0].inline_data.data
    except (AttributeError, IndexError, TypeError) as exc:
        raise UpstreamError("tts", "response carried no audio") from exc

    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UpstreamError("tts", "audio payload is not valid base64") from exc

    if not data:
        raise UpstreamError("tts", "empty audio payload")
    return bytes(data)
