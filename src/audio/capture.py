"""Microphone capture via sounddevice, delivering raw 16 kHz mono int16 bytes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from src.pipeline_config import CHANNELS, SAMPLE_RATE

logger = logging.getLogger(__name__)

BLOCK_SIZE = 1600  # 100 ms of audio per callback

AudioHandler = Callable[[bytes], None]


class AudioCaptureError(Exception):
    """Raised when audio capture cannot be started."""


class MicrophonePermissionError(AudioCaptureError):
    """Raised when the OS refuses to open the microphone input stream."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            "Microphone access denied. Please enable it in System Settings > "
            f"Privacy & Security > Microphone. ({reason})"
        )


def _load_sounddevice() -> Any:
    # Imported lazily: sounddevice needs the PortAudio shared library at import time.
    try:
        import sounddevice as sd
    except OSError as exc:
        raise AudioCaptureError(f"PortAudio library not available: {exc}") from exc

    return sd


class AudioCapture:
    """Owns one sounddevice input stream.

    The handler is invoked on the PortAudio callback thread; it must not block.
    """

    def __init__(self, device: str | int | None = None) -> None:
        self._device = device
        self._stream: Any = None
        self._handler: AudioHandler | None = None
        self._paused = False

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    @property
    def is_paused(self) -> bool:
        return self._paused

    def set_handler(self, handler: AudioHandler) -> None:
        self._handler = handler

    def _callback(self, indata: Any, frames: int, time: Any, status: Any) -> None:
        if status:
            logger.debug("Audio input status: %s", status)
        if self._handler is not None:
            self._handler(bytes(indata))

    def start(self) -> None:
        """Open and start the input stream.

        Raises:
            AudioCaptureError: If no input device is available.
            MicrophonePermissionError: If the stream cannot be opened.
        """
        if self._stream is not None:
            return

        sd = _load_sounddevice()
        try:
            sd.query_devices(self._device, "input")
        except (ValueError, sd.PortAudioError) as exc:
            raise AudioCaptureError(f"No audio input available: {exc}") from exc

        try:
            stream = sd.RawInputStream(
                samplerate=SAMPLE_RATE,
                blocksize=BLOCK_SIZE,
                dtype="int16",
                channels=CHANNELS,
                device=self._device,
                callback=self._callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise MicrophonePermissionError(str(exc)) from exc

        self._stream = stream
        self._paused = False
        logger.info("Audio capture started (device=%s)", self._device or "default")

    def pause(self) -> None:
        if self._stream is None or self._paused:
            return
        self._stream.stop()
        self._paused = True

    def resume(self) -> None:
        if self._stream is None or not self._paused:
            return
        self._stream.start()
        self._paused = False

    def stop(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        self._paused = False
        logger.info("Audio capture stopped")
