"""
Speech synthesis contract.

This module defines the *interface only*: no playback, no decoding, no
retries.

Key invariants:
- Output is raw PCM16 little-endian mono at OUTPUT_SAMPLE_RATE_HZ (24 kHz).
- Input is SSML (or plain text) plus a provider voice name.
- Failures surface as UpstreamError; an empty audio payload is a failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SpeechSynthesizer(ABC):
    """
    Abstract one-shot text-to-speech adapter.

    Non-responsibilities:
    - No chunking (callers pass a whole script)
    - No decoding to float buffers (audio.pcm does that)
    - No playback
    """

    @abstractmethod
    async def synthesize(self, ssml: str, *, voice: str | None = None) -> bytes:
        """
        Synthesize one script.

        Args:
            ssml: SSML-formatted (or plain) text, non-empty.
            voice: Provider voice name; None selects the configured default.

        Returns:
            PCM16 bytes (even length) at 24 kHz mono.
        """
        raise NotImplementedError
