"""Data models for the live transcript."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from src.utils.timefmt import format_ms

PLACEHOLDER_SPEAKER = "Speaker"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TranscriptSegment:
    """One finalized span of transcribed speech. Never mutated after creation."""

    text: str
    start_ms: int
    end_ms: int
    speaker: str = PLACEHOLDER_SPEAKER  # no diarization; placeholder label
    is_final: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def formatted_timestamp(self) -> str:
        """Start offset as ``MM:SS``."""
        return format_ms(self.start_ms)


class TranscriptEventKind(StrEnum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptEvent:
    """Event emitted by the transcription pipeline."""

    kind: TranscriptEventKind
    text: str = ""
    segment: TranscriptSegment | None = None
    error: Exception | None = None

    @classmethod
    def partial(cls, text: str) -> TranscriptEvent:
        return cls(kind=TranscriptEventKind.PARTIAL, text=text)

    @classmethod
    def final(cls, segment: TranscriptSegment) -> TranscriptEvent:
        return cls(kind=TranscriptEventKind.FINAL, text=segment.text, segment=segment)

    @classmethod
    def failed(cls, error: Exception) -> TranscriptEvent:
        return cls(kind=TranscriptEventKind.ERROR, text=str(error), error=error)
