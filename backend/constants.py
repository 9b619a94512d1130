"""
CONSTANTS
---------
Single source of truth for all behavioral invariants of the tutor.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (keys, model names) live in config.py instead.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono)
# =============================================================================

PCM_SAMPLE_WIDTH_BYTES: Final[int] = 2  # signed 16-bit little-endian
PCM_CHANNELS: Final[int] = 1
PCM_FULL_SCALE: Final[float] = 32768.0
PCM_INT16_MIN: Final[int] = -32768
PCM_INT16_MAX: Final[int] = 32767

# Microphone capture / live session uplink
INPUT_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_FRAME_SAMPLES: Final[int] = 4096
CAPTURE_FRAME_BYTES: Final[int] = CAPTURE_FRAME_SAMPLES * PCM_SAMPLE_WIDTH_BYTES

# Synthesized speech / live session downlink
OUTPUT_SAMPLE_RATE_HZ: Final[int] = 24_000

# Speaker sink block size (frames pulled from the output context per callback)
OUTPUT_BLOCK_FRAMES: Final[int] = 1024

# =============================================================================
# Live Session Wire Format
# =============================================================================

LIVE_INPUT_MIME_TYPE: Final[str] = f"audio/pcm;rate={INPUT_SAMPLE_RATE_HZ}"

# =============================================================================
# Lesson Playback
# =============================================================================

# Cooperative poll interval while narrating (must stay <= 100ms so a
# checkpoint is never skipped between polls)
LESSON_POLL_INTERVAL_S: Final[float] = 0.05

# =============================================================================
# Structured Replies
# =============================================================================

STRUCTURED_REPLY_DELIMITER: Final[str] = "||--JSON--||"
APOLOGY_TEXT: Final[str] = (
    "Arre, kuch gadbad ho gayi! Sorry, I couldn't answer that just now. "
    "Please try again in a moment."
)

# =============================================================================
# Upstream Requests
# =============================================================================

UPSTREAM_TIMEOUT_S: Final[float] = 45.0
LIVE_CONNECT_TIMEOUT_S: Final[float] = 15.0

# =============================================================================
# Conversation Context
# =============================================================================

MAX_CONTEXT_TURNS: Final[int] = 12
MAX_CONTEXT_CHARS: Final[int] = 12_000

# Truncation rule:
# While (turn_count > MAX_CONTEXT_TURNS) OR (total_chars > MAX_CONTEXT_CHARS):
#     drop oldest turn

# Chat histories held by the HTTP server; past this count the least
# recently used session is dropped
MAX_CHAT_SESSIONS: Final[int] = 256


# =============================================================================
# Helper Functions
# =============================================================================

def samples_to_seconds(num_samples: int, sample_rate_hz: int) -> float:
    """
    Convert a sample count to a duration in seconds.

    Non-positive input returns 0.0.
    """
    if num_samples <= 0:
        return 0.0
    return num_samples / float(sample_rate_hz)


def seconds_to_samples(duration_s: float, sample_rate_hz: int) -> int:
    """
    Convert a duration in seconds to the nearest whole sample index.

    Non-positive input returns 0.
    """
    if duration_s <= 0:
        return 0
    return int(round(duration_s * sample_rate_hz))
