"""Pipeline configuration: backend/export enums and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings

SAMPLE_RATE = 16_000
BYTES_PER_SAMPLE = 2  # 16-bit signed PCM
CHANNELS = 1


class LLMMode(StrEnum):
    """Available LLM backends for coaching analysis."""

    LOCAL = "local"  # LM Studio / any OpenAI-compatible server without auth
    CLOUD = "cloud"  # OpenAI-compatible API with bearer token + JSON mode
    ANTHROPIC = "anthropic"


class ExportFormat(StrEnum):
    """Session export formats."""

    JSON = "json"
    PLAIN_TEXT = "plain_text"
    CSV = "csv"

    @property
    def file_extension(self) -> str:
        return {"json": "json", "plain_text": "txt", "csv": "csv"}[self.value]


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable timing configuration for one call session.

    Defaults mirror the production behaviour: 3 s chunks with 500 ms overlap,
    a 30 s audio cap, a 7 s coaching tick over the last 60 s of transcript.
    """

    chunk_duration_ms: int = 3000
    overlap_ms: int = 500
    max_buffer_seconds: int = 30
    tick_interval_seconds: float = 7.0
    transcript_window_ms: int = 60_000
    max_segments: int = 1000
    language: str = "auto"

    def __post_init__(self) -> None:
        if self.chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")
        if not 0 <= self.overlap_ms < self.chunk_duration_ms:
            raise ValueError("overlap_ms must be in [0, chunk_duration_ms)")
        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            chunk_duration_ms=settings.chunk_duration_ms,
            overlap_ms=settings.chunk_overlap_ms,
            max_buffer_seconds=settings.max_buffer_seconds,
            tick_interval_seconds=settings.tick_interval_seconds,
            transcript_window_ms=settings.transcript_window_ms,
            max_segments=settings.max_transcript_segments,
            language=settings.transcription_language,
        )
