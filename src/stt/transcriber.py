"""whisper.cpp transcriber binding.

Audio bytes are fed into an :class:`AudioChunker`; a single background task
exports ready chunks as WAV files and runs one whisper.cpp subprocess at a
time. Parsed segments are published as :class:`TranscriptEvent` objects on an
asyncio queue consumed through :meth:`WhisperTranscriber.events`.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING

from src.audio.chunker import AudioChunker
from src.stt.parsers import parse_whisper_output
from src.transcript.models import TranscriptEvent, TranscriptSegment

if TYPE_CHECKING:
    from src.config import Settings

logger = logging.getLogger(__name__)

MODEL_FILENAMES = ("ggml-base.bin", "ggml-base.en.bin")
MODEL_SEARCH_DIRS = (
    Path("models"),
    Path("/usr/local/share/whisper"),
    Path.home() / ".cache" / "whisper",
)
BINARY_NAMES = ("whisper-cli", "whisper-cpp", "main")


class TranscriberError(Exception):
    """Base class for transcriber failures."""


class ResourceMissingError(TranscriberError):
    """Raised when the whisper binary or model file cannot be found."""

    def __init__(self, resource: str, searched: list[Path] | None = None) -> None:
        lines = [f"Required resource not found: {resource}"]
        for directory in searched or []:
            lines.append(f"  {directory}: {_describe_dir(directory)}")
        super().__init__("\n".join(lines))
        self.resource = resource


class TranscriptionProcessError(TranscriberError):
    """Raised when whisper.cpp exits non-zero for a chunk."""

    def __init__(self, returncode: int, stderr: str = "") -> None:
        message = f"whisper.cpp exited with code {returncode}"
        if stderr:
            message += f": {stderr.strip()[:500]}"
        super().__init__(message)
        self.returncode = returncode


def _describe_dir(directory: Path) -> str:
    if not directory.is_dir():
        return "<missing>"
    names = sorted(p.name for p in directory.iterdir())
    return ", ".join(names) if names else "<empty>"


def resolve_model_path(settings: Settings) -> Path:
    """Find the whisper model file: explicit setting first, then the search dirs.

    Raises:
        ResourceMissingError: With a listing of every searched directory.
    """
    if settings.whisper_model_path:
        path = Path(settings.whisper_model_path).expanduser()
        if path.is_file():
            return path
        raise ResourceMissingError(str(path), [path.parent])

    for directory in MODEL_SEARCH_DIRS:
        for name in MODEL_FILENAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    raise ResourceMissingError(" or ".join(MODEL_FILENAMES), list(MODEL_SEARCH_DIRS))


def resolve_binary_path(settings: Settings) -> Path:
    """Find the whisper.cpp CLI: explicit setting first, then ``PATH``."""
    if settings.whisper_binary_path:
        path = Path(settings.whisper_binary_path).expanduser()
        if path.is_file():
            return path
        raise ResourceMissingError(str(path), [path.parent])

    for name in BINARY_NAMES:
        found = shutil.which(name)
        if found:
            return Path(found)
    raise ResourceMissingError(f"whisper.cpp binary ({', '.join(BINARY_NAMES)}) on PATH")


@dataclass
class TranscriberConfig:
    model_path: Path
    binary_path: Path
    language: str = "auto"
    chunk_duration_ms: int = 3000
    overlap_ms: int = 500
    max_buffer_seconds: int = 30
    work_dir: Path | None = None


class WhisperTranscriber:
    """Chunk-fed whisper.cpp transcriber processing one chunk at a time."""

    def __init__(self, config: TranscriberConfig) -> None:
        self.config = config
        self._chunker = AudioChunker(
            chunk_duration_ms=config.chunk_duration_ms,
            overlap_ms=config.overlap_ms,
            max_duration_seconds=config.max_buffer_seconds,
            output_dir=config.work_dir,
        )
        self._events: asyncio.Queue[TranscriptEvent | None] = asyncio.Queue()
        self._data_ready = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._base_time_ms = 0
        self._last_end_ms: int | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def base_time_ms(self) -> int:
        """Session offset applied to the next chunk's segment times."""
        return self._base_time_ms

    def check_resources(self) -> None:
        """Raise :class:`ResourceMissingError` unless binary and model both exist."""
        if not self.config.binary_path.is_file():
            raise ResourceMissingError(
                str(self.config.binary_path), [self.config.binary_path.parent]
            )
        if not self.config.model_path.is_file():
            raise ResourceMissingError(
                str(self.config.model_path), [self.config.model_path.parent]
            )

    async def start(self) -> None:
        if self.is_running:
            return
        self.check_resources()
        self._base_time_ms = 0
        self._last_end_ms = None
        self._task = asyncio.create_task(self._process_loop())
        logger.info("Transcriber started (model=%s, language=%s)", self.config.model_path, self.config.language)

    def feed_audio(self, samples: bytes) -> None:
        """Append captured samples. Must be called on the event loop thread."""
        self._chunker.append(samples)
        if self._chunker.has_chunk():
            self._data_ready.set()

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        """Yield transcript events until the transcriber is stopped."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Transcriber loop had already failed")
            self._task = None
        self._chunker.clear()
        self._data_ready.clear()
        await self._events.put(None)
        logger.info("Transcriber stopped")

    async def _process_loop(self) -> None:
        while True:
            await self._data_ready.wait()
            self._data_ready.clear()
            while self._chunker.has_chunk():
                await self._transcribe_next_chunk()

    async def _transcribe_next_chunk(self) -> None:
        wav_path: Path | None = None
        try:
            wav_path = self._export_chunk()
            output = await self._run_whisper(wav_path)
            for segment in self._order_segments(parse_whisper_output(output, self._base_time_ms)):
                await self._events.put(TranscriptEvent.final(segment))
        except TranscriberError as exc:
            logger.warning("Chunk transcription failed: %s", exc)
            await self._events.put(TranscriptEvent.failed(exc))
        finally:
            # The timeline advances even when a chunk fails.
            self._base_time_ms += self._chunker.advance_ms
            if wav_path is not None:
                wav_path.unlink(missing_ok=True)
                Path(f"{wav_path}.json").unlink(missing_ok=True)

    def _export_chunk(self) -> Path:
        try:
            return self._chunker.export_chunk()
        except OSError as exc:
            raise TranscriberError(f"Failed to write audio chunk: {exc}") from exc

    def _order_segments(self, segments: list[TranscriptSegment]) -> list[TranscriptSegment]:
        """Drop or trim segments re-transcribed from the overlap with the previous chunk.

        Start offsets never go below the end of the last emitted segment.
        """
        ordered: list[TranscriptSegment] = []
        for segment in segments:
            last_end = self._last_end_ms
            if last_end is not None:
                if segment.end_ms <= last_end:
                    logger.debug("Dropping overlap segment at %d ms: %r", segment.start_ms, segment.text)
                    continue
                if segment.start_ms < last_end:
                    segment = replace(segment, start_ms=last_end)
            ordered.append(segment)
            self._last_end_ms = segment.end_ms
        return ordered

    async def _run_whisper(self, wav_path: Path) -> str:
        """Run whisper.cpp on one WAV file and return its raw output text.

        The child process is killed if the surrounding task is cancelled.

        Raises:
            TranscriptionProcessError: If the process exits non-zero.
            TranscriberError: If the process cannot be launched or its output read.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                str(self.config.binary_path),
                "-m",
                str(self.config.model_path),
                "-f",
                str(wav_path),
                "-oj",
                "-l",
                self.config.language,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscriberError(f"Failed to launch {self.config.binary_path}: {exc}") from exc

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            raise TranscriptionProcessError(
                process.returncode or -1, stderr.decode("utf-8", errors="replace")
            )

        json_path = Path(f"{wav_path}.json")
        try:
            if json_path.is_file():
                return json_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TranscriberError(f"Failed to read {json_path}: {exc}") from exc
        return stdout.decode("utf-8", errors="replace")
