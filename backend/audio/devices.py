"""
Sound card bindings (sounddevice / PortAudio).

- MicrophoneCapture: float32 mono input at 16 kHz in fixed 4096-sample frames,
  delivered to the event loop as an async iterator.
- SpeakerSink: pulls mixed blocks from an AudioContext inside the PortAudio
  output callback, which is what advances the context clock.

sounddevice is imported lazily so the rest of the pipeline (and its tests)
works on machines without PortAudio.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Protocol

import numpy as np

from audio.context import AudioContext
from constants import CAPTURE_FRAME_SAMPLES, INPUT_SAMPLE_RATE_HZ, OUTPUT_BLOCK_FRAMES
from observability.logger import log_event


class MicrophonePermissionError(PermissionError):
    """Microphone access denied or no usable input device."""


class AudioCapture(Protocol):
    """Capture stream contract used by the live session controller."""

    async def open(self) -> None: ...

    def frames(self) -> AsyncIterator[np.ndarray]: ...

    def close(self) -> None: ...


def _import_sounddevice() -> Any:
    """Import sounddevice, raising a clear error if PortAudio is missing."""
    try:
        import sounddevice as _sd  # pylint: disable=import-outside-toplevel

        return _sd
    except (ImportError, OSError) as exc:
        raise MicrophonePermissionError(
            f"audio device layer unavailable (sounddevice/PortAudio): {exc}"
        ) from exc


class MicrophoneCapture:
    """
    Fixed-frame microphone capture.

    PortAudio invokes the callback on its own thread; frames are copied and
    handed to the event loop with call_soon_threadsafe. close() is
    idempotent and ends the frames() iterator.
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ,
        frame_samples: int = CAPTURE_FRAME_SAMPLES,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._frame_samples = frame_samples
        self._device = device

        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._closed = False

    async def open(self) -> None:
        """
        Open and start the input stream.

        Raises:
            MicrophonePermissionError if the device cannot be opened.
        """
        sd = _import_sounddevice()
        self._loop = asyncio.get_running_loop()

        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate_hz,
                blocksize=self._frame_samples,
                channels=1,
                dtype="float32",
                device=self._device,
                callback=self._on_audio,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise MicrophonePermissionError(f"microphone unavailable: {exc}") from exc

        self._stream = stream
        log_event({
            "event_type": "MIC_CAPTURE_STARTED",
            "sample_rate_hz": self._sample_rate_hz,
            "frame_samples": self._frame_samples,
        })

    async def frames(self) -> AsyncIterator[np.ndarray]:
        """Yield captured frames until close()."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def close(self) -> None:
        """Stop and release the input device."""
        if self._closed:
            return
        self._closed = True

        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            log_event({"event_type": "MIC_CAPTURE_STOPPED"})

        self._post(None)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        if status:
            log_event({
                "event_type": "MIC_CAPTURE_STATUS",
                "level": "WARNING",
                "status": str(status),
            })
        self._post(indata[:, 0].copy())

    def _post(self, item: np.ndarray | None) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._queue.put_nowait(item)
            return
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass


class SpeakerSink:
    """
    Output stream that renders an AudioContext to the default speaker.

    The context's clock advances exactly as fast as the device consumes
    audio. Ended callbacks are routed onto the running event loop.
    """

    def __init__(
        self,
        context: AudioContext,
        *,
        block_frames: int = OUTPUT_BLOCK_FRAMES,
        device: int | str | None = None,
    ) -> None:
        self._context = context
        self._block_frames = block_frames
        self._device = device
        self._stream: Any = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """Open the output device. Must be called from the event loop."""
        if self._stream is not None:
            return

        sd = _import_sounddevice()
        self._context.attach_loop(asyncio.get_running_loop())

        stream = sd.OutputStream(
            samplerate=self._context.sample_rate_hz,
            blocksize=self._block_frames,
            channels=1,
            dtype="float32",
            device=self._device,
            callback=self._on_output,
        )
        stream.start()
        self._stream = stream

    def close(self) -> None:
        """Close the output device. Idempotent."""
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        self._context.attach_loop(None)

    def _on_output(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        outdata[:, 0] = self._context.render(frames)
