"""
Live duplex transport contract.

This module defines the *interface only*. No capture, no playback, no
state machine lives here.

Key invariants:
- connect() returns only after the remote session is open (setup handshake
  complete); failure raises LiveConnectionError.
- send_media() is fire-and-forget per frame: no backpressure signal.
- receive() yields parsed LiveMessages until the remote closes, then ends.
  Transport failures while receiving raise LiveConnectionError.
- close() is idempotent and best-effort.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

from audio.buffers import MediaFrame


class LiveConnectionError(ConnectionError):
    """Live session could not be opened, or failed while open."""


@dataclass(frozen=True)
class LiveMessage:
    """
    One inbound event from the live session.

    audio_b64:
        base64 PCM16 mono at the downlink rate, or None.
    interrupted:
        The remote detected the user talking over the model (barge-in).
    turn_complete:
        The model finished its turn.
    transcript:
        Optional text transcription of the model's speech.
    go_away:
        The remote announced it will close the session soon.
    """
    audio_b64: str | None = None
    interrupted: bool = False
    turn_complete: bool = False
    transcript: str | None = None
    go_away: bool = False


class LiveTransport(ABC):
    """
    Abstract bidirectional speech session.

    Implementations own exactly one remote session per instance.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the remote session and wait for it to be ready."""
        raise NotImplementedError

    @abstractmethod
    async def send_media(self, frame: MediaFrame) -> None:
        """Send one encoded uplink media frame."""
        raise NotImplementedError

    @abstractmethod
    def receive(self) -> AsyncIterator[LiveMessage]:
        """Iterate inbound messages until the session closes."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close the session. Must not raise."""
        raise NotImplementedError
