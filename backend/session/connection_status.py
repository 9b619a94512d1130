"""
Connection lifecycle of a live voice session.

IDLE -> CONNECTING -> OPEN -> CLOSING -> IDLE

Errors are not a state of their own: they are recorded on the session
(last_error) and routed through the same CLOSING teardown as a normal stop.
"""
from enum import Enum


class LiveSessionState(str, Enum):
    """Live voice session lifecycle."""

    IDLE = "idle"              # No microphone, no remote session
    CONNECTING = "connecting"  # Opening the microphone / awaiting setup handshake
    OPEN = "open"              # Streaming both directions
    CLOSING = "closing"        # Teardown in progress
