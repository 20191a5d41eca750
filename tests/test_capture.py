"""Tests for microphone capture with sounddevice mocked out."""

from __future__ import annotations

import builtins
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from src.audio.capture import AudioCapture, AudioCaptureError, MicrophonePermissionError


class FakePortAudioError(Exception):
    pass


def fake_sounddevice() -> MagicMock:
    sd = MagicMock()
    sd.PortAudioError = FakePortAudioError
    return sd


class TestAudioCapture:
    def test_start_opens_16k_mono_int16_stream(self) -> None:
        sd = fake_sounddevice()
        capture = AudioCapture()
        with patch("src.audio.capture._load_sounddevice", return_value=sd):
            capture.start()

        kwargs = sd.RawInputStream.call_args.kwargs
        assert kwargs["samplerate"] == 16000
        assert kwargs["channels"] == 1
        assert kwargs["dtype"] == "int16"
        sd.RawInputStream.return_value.start.assert_called_once()
        assert capture.is_running

    def test_callback_forwards_bytes(self) -> None:
        received: list[bytes] = []
        capture = AudioCapture()
        capture.set_handler(received.append)
        capture._callback(memoryview(b"\x01\x00\x02\x00"), 2, None, None)
        assert received == [b"\x01\x00\x02\x00"]

    def test_no_input_device(self) -> None:
        sd = fake_sounddevice()
        sd.query_devices.side_effect = ValueError("No input device matching")
        with patch("src.audio.capture._load_sounddevice", return_value=sd):
            with pytest.raises(AudioCaptureError) as exc_info:
                AudioCapture().start()
        assert not isinstance(exc_info.value, MicrophonePermissionError)

    def test_missing_portaudio_library(self) -> None:
        real_import = builtins.__import__

        def fake_import(name: str, *args: Any, **kwargs: Any) -> Any:
            if name == "sounddevice":
                raise OSError("PortAudio library not found")
            return real_import(name, *args, **kwargs)

        capture = AudioCapture()
        with patch("builtins.__import__", side_effect=fake_import):
            with pytest.raises(AudioCaptureError, match="PortAudio library not available"):
                capture.start()
        assert not capture.is_running

    def test_stream_refused_is_permission_error(self) -> None:
        sd = fake_sounddevice()
        sd.RawInputStream.side_effect = FakePortAudioError("Error opening RawInputStream")
        capture = AudioCapture()
        with patch("src.audio.capture._load_sounddevice", return_value=sd):
            with pytest.raises(MicrophonePermissionError) as exc_info:
                capture.start()
        assert "Privacy & Security" in str(exc_info.value)
        assert not capture.is_running

    def test_pause_resume_stop(self) -> None:
        sd = fake_sounddevice()
        capture = AudioCapture()
        with patch("src.audio.capture._load_sounddevice", return_value=sd):
            capture.start()
        stream = sd.RawInputStream.return_value

        capture.pause()
        capture.pause()
        assert capture.is_paused
        assert stream.stop.call_count == 1

        capture.resume()
        assert not capture.is_paused

        capture.stop()
        stream.close.assert_called_once()
        assert not capture.is_running
