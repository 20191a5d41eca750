"""Windowed audio chunker: accumulates 16 kHz mono PCM and emits overlapping WAV chunks."""

from __future__ import annotations

import io
import tempfile
import uuid
import wave
from dataclasses import dataclass
from pathlib import Path

from src.pipeline_config import BYTES_PER_SAMPLE, CHANNELS, SAMPLE_RATE


class InsufficientDataError(Exception):
    """Raised when a chunk is requested before enough audio has accumulated."""

    def __init__(self, buffered_ms: int, required_ms: int) -> None:
        super().__init__(
            f"Not enough audio data for a chunk ({buffered_ms} ms buffered, {required_ms} ms needed)"
        )
        self.buffered_ms = buffered_ms
        self.required_ms = required_ms


@dataclass(frozen=True)
class AudioChunk:
    """One fixed-duration slice of audio handed to the transcriber."""

    data: bytes
    duration_ms: int
    overlap_ms: int


def _ms_to_bytes(ms: int) -> int:
    return int(ms / 1000 * SAMPLE_RATE) * BYTES_PER_SAMPLE


def encode_wav(pcm: bytes) -> bytes:
    """Wrap raw 16-bit mono PCM in a canonical 44-byte-header WAV container."""
    out = io.BytesIO()
    with wave.open(out, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(BYTES_PER_SAMPLE)
        wav.setframerate(SAMPLE_RATE)
        wav.writeframes(pcm)
    return out.getvalue()


class AudioChunker:
    """Byte buffer of 16-bit mono 16 kHz samples with overlap-preserving export.

    Chunk readiness depends only on the number of buffered bytes, never on
    wall-clock time. The buffer is capped at ``max_duration_seconds``; when the
    cap is exceeded the oldest bytes are dropped regardless of chunk boundaries.
    """

    def __init__(
        self,
        chunk_duration_ms: int = 3000,
        overlap_ms: int = 500,
        max_duration_seconds: int = 30,
        output_dir: Path | None = None,
    ) -> None:
        if not 0 <= overlap_ms < chunk_duration_ms:
            raise ValueError("overlap_ms must be in [0, chunk_duration_ms)")
        self.chunk_duration_ms = chunk_duration_ms
        self.overlap_ms = overlap_ms
        self._max_bytes = max_duration_seconds * SAMPLE_RATE * BYTES_PER_SAMPLE
        self._output_dir = output_dir
        self._buffer = bytearray()

    @property
    def chunk_bytes(self) -> int:
        return _ms_to_bytes(self.chunk_duration_ms)

    @property
    def overlap_bytes(self) -> int:
        return _ms_to_bytes(self.overlap_ms)

    @property
    def advance_ms(self) -> int:
        """Distinct (non-overlapping) audio consumed per exported chunk."""
        return self.chunk_duration_ms - self.overlap_ms

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    @property
    def duration_ms(self) -> int:
        """Current buffer duration in milliseconds."""
        return int(len(self._buffer) // BYTES_PER_SAMPLE / SAMPLE_RATE * 1000)

    def append(self, samples: bytes) -> None:
        """Append raw little-endian int16 samples, dropping the oldest past the cap."""
        self._buffer.extend(samples)
        excess = len(self._buffer) - self._max_bytes
        if excess > 0:
            # Keep the front of the buffer on a sample boundary.
            excess += excess % BYTES_PER_SAMPLE
            del self._buffer[:excess]

    def has_chunk(self) -> bool:
        return len(self._buffer) >= self.chunk_bytes

    def take_chunk(self) -> AudioChunk:
        """Remove and return the next chunk, retaining the overlap for the next one."""
        if not self.has_chunk():
            raise InsufficientDataError(self.duration_ms, self.chunk_duration_ms)

        data = bytes(self._buffer[: self.chunk_bytes])
        advance = self.chunk_bytes - self.overlap_bytes
        if len(self._buffer) > advance:
            del self._buffer[:advance]
        else:
            self._buffer.clear()

        return AudioChunk(data=data, duration_ms=self.chunk_duration_ms, overlap_ms=self.overlap_ms)

    def export_chunk(self) -> Path:
        """Take the next chunk and write it to a temporary WAV file.

        The caller owns the returned file and must delete it after use.

        Raises:
            InsufficientDataError: If :meth:`has_chunk` is False.
        """
        chunk = self.take_chunk()
        directory = self._output_dir or Path(tempfile.gettempdir())
        path = directory / f"{uuid.uuid4()}.wav"
        path.write_bytes(encode_wav(chunk.data))
        return path

    def clear(self) -> None:
        self._buffer.clear()
