"""
PCM conversion utilities.

- base64 transport codec for raw PCM16 bytes
- PCM16 little-endian -> float32 AudioBuffer
- float32 -> PCM16 little-endian (capture path)

Pure functions only. No resampling, no channel mixing.
"""

from __future__ import annotations

import base64
import binascii

import numpy as np

from audio.buffers import AudioBuffer
from constants import (
    OUTPUT_SAMPLE_RATE_HZ,
    PCM_FULL_SCALE,
    PCM_INT16_MAX,
    PCM_INT16_MIN,
    PCM_SAMPLE_WIDTH_BYTES,
)


class FormatError(ValueError):
    """Base class for malformed audio or structured payloads."""


class PcmFormatError(FormatError):
    """PCM payload cannot be interpreted as whole 16-bit samples."""


class PcmDecodeError(FormatError):
    """Transport text is not valid base64."""


# -------------------------
# Transport codec
# -------------------------

def encode_base64(data: bytes) -> str:
    """Encode raw bytes as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def decode_base64(text: str) -> bytes:
    """
    Decode standard base64 text back to raw bytes.

    Raises:
        PcmDecodeError on non-alphabet characters or bad padding.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PcmDecodeError(f"invalid base64 audio payload: {exc}") from exc


# -------------------------
# Sample conversion
# -------------------------

def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Raises:
        PcmFormatError if the byte length is odd.
    """
    if len(pcm_bytes) % PCM_SAMPLE_WIDTH_BYTES != 0:
        raise PcmFormatError(
            f"PCM16 payload length must be even, got {len(pcm_bytes)} bytes"
        )

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / PCM_FULL_SCALE


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Convert float samples to PCM16 little-endian bytes.

    Samples are clipped to [-1.0, 1.0] and scaled by 32768; +1.0 saturates
    at 32767.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.clip(clipped * PCM_FULL_SCALE, PCM_INT16_MIN, PCM_INT16_MAX)
    return scaled.astype("<i2").tobytes()


def decode_pcm16(
    pcm_bytes: bytes,
    *,
    sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
) -> AudioBuffer:
    """
    Build a playable mono AudioBuffer from raw PCM16 bytes.

    Length of the result is len(pcm_bytes) / 2.
    """
    return AudioBuffer(
        samples=pcm16le_to_float32(pcm_bytes),
        sample_rate_hz=sample_rate_hz,
    )


def decode_base64_pcm16(
    text: str,
    *,
    sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
) -> AudioBuffer:
    """base64 text of PCM16 -> AudioBuffer."""
    return decode_pcm16(decode_base64(text), sample_rate_hz=sample_rate_hz)
