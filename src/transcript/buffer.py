"""Append-only transcript aggregate with windowed and delta views."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from src.transcript.models import TranscriptSegment


def segment_to_dict(segment: TranscriptSegment) -> dict[str, Any]:
    return {
        "id": str(segment.id),
        "text": segment.text,
        "start_ms": segment.start_ms,
        "end_ms": segment.end_ms,
        "speaker": segment.speaker,
        "is_final": segment.is_final,
        "created_at": segment.created_at.isoformat(),
    }


class TranscriptBuffer:
    """Time-ordered finalized segments plus a separate in-progress hypothesis.

    Finalized segments are written only by the transcription path; the
    in-progress text is written only by the partial-text path. Retention is
    bounded to ``max_segments``; dropping old segments does not change the
    windowed or delta views of the segments that remain.
    """

    def __init__(self, max_segments: int = 1000) -> None:
        self.max_segments = max_segments
        self._segments: list[TranscriptSegment] = []
        self._in_progress = ""

    @property
    def segments(self) -> list[TranscriptSegment]:
        return list(self._segments)

    @property
    def in_progress_text(self) -> str:
        return self._in_progress

    @property
    def full_text(self) -> str:
        return " ".join(s.text for s in self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def is_empty(self) -> bool:
        return not self._segments and not self._in_progress

    def append(self, segment: TranscriptSegment) -> None:
        """Append a finalized segment; it supersedes any in-progress text."""
        self._segments.append(segment)
        self._in_progress = ""

        overflow = len(self._segments) - self.max_segments
        if overflow > 0:
            del self._segments[:overflow]

    def set_in_progress(self, text: str) -> None:
        self._in_progress = text

    def windowed_text(self, last_ms: int) -> str:
        """Text of segments ending within ``last_ms`` of the most recent segment's end."""
        if not self._segments:
            return ""
        cutoff = self._segments[-1].end_ms - last_ms
        return " ".join(s.text for s in self._segments if s.end_ms > cutoff)

    def segments_since(self, since: datetime) -> list[TranscriptSegment]:
        return [s for s in self._segments if s.created_at > since]

    def delta_text(self, since: datetime) -> str:
        """Text of segments created strictly after ``since``."""
        return " ".join(s.text for s in self.segments_since(since))

    def clear(self) -> None:
        self._segments.clear()
        self._in_progress = ""

    def export_json(self) -> str:
        return json.dumps([segment_to_dict(s) for s in self._segments], indent=2, sort_keys=True)

    def export_plain_text(self) -> str:
        return "\n".join(f"[{s.formatted_timestamp}] {s.speaker}: {s.text}" for s in self._segments)
