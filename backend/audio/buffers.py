"""
Audio buffer primitives.

Pure data containers only.
No mixing, no scheduling, no device logic.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from constants import samples_to_seconds


@dataclass(frozen=True)
class AudioBuffer:
    """
    Decoded, time-domain mono audio ready for playback.

    samples:
        float32 samples in [-1.0, 1.0). Treated as read-only once built;
        several sources may play the same buffer.

    sample_rate_hz:
        Rate the samples were produced at. The output context resamples
        when this differs from its own rate.
    """
    samples: np.ndarray
    sample_rate_hz: int

    @property
    def length(self) -> int:
        """Number of samples."""
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return samples_to_seconds(self.length, self.sample_rate_hz)

    @classmethod
    def silence(cls, duration_s: float, sample_rate_hz: int) -> AudioBuffer:
        """Build a silent buffer of the given duration."""
        n = max(0, int(round(duration_s * sample_rate_hz)))
        return cls(samples=np.zeros(n, dtype=np.float32), sample_rate_hz=sample_rate_hz)


@dataclass(frozen=True)
class MediaFrame:
    """
    One uplink media frame for a live session.

    data:
        base64 text of PCM16 little-endian mono audio.

    mime_type:
        Wire descriptor, e.g. "audio/pcm;rate=16000".
    """
    data: str
    mime_type: str
