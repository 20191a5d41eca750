"""Parsers for whisper.cpp output: JSON (``-oj``) and the timestamped text fallback."""

from __future__ import annotations

import json
import re

from src.transcript.models import PLACEHOLDER_SPEAKER, TranscriptSegment

# Pattern: [00:00.000 --> 00:05.000] text  (an HH: prefix is also accepted)
_TIMESTAMP_LINE_RE = re.compile(
    r"^\[((?:\d{2}:)?\d{2}:\d{2}\.\d{3})\s*-->\s*((?:\d{2}:)?\d{2}:\d{2}\.\d{3})\]\s*(.+)$"
)


def _parse_timestamp_ms(ts: str) -> int:
    """Convert ``MM:SS.mmm`` or ``HH:MM:SS.mmm`` to milliseconds."""
    parts = ts.strip().split(":")
    if len(parts) == 3:
        hours, minutes, seconds = parts
    else:
        hours = "0"
        minutes, seconds = parts
    secs, millis = seconds.split(".")
    return ((int(hours) * 60 + int(minutes)) * 60 + int(secs)) * 1000 + int(millis)


def parse_whisper_json(content: str, base_time_ms: int = 0) -> list[TranscriptSegment]:
    """Parse whisper.cpp JSON output into transcript segments.

    Expected format::

        {"transcription": [{"offsets": {"from": 0, "to": 2000}, "text": " Hello"}]}

    Offsets are relative to the chunk and are shifted by *base_time_ms*.

    Raises:
        ValueError: If *content* is not JSON or lacks a ``transcription`` list.
    """
    data = json.loads(content)
    if not isinstance(data, dict) or not isinstance(data.get("transcription"), list):
        msg = "Unrecognized whisper JSON output: missing 'transcription' list"
        raise ValueError(msg)

    segments: list[TranscriptSegment] = []
    for item in data["transcription"]:
        text = str(item.get("text", "")).strip()
        if not text:
            continue
        offsets = item.get("offsets", {})
        segments.append(
            TranscriptSegment(
                text=text,
                start_ms=base_time_ms + int(offsets.get("from", 0)),
                end_ms=base_time_ms + int(offsets.get("to", 0)),
                speaker=PLACEHOLDER_SPEAKER,
            )
        )
    return segments


def parse_timestamped_lines(content: str, base_time_ms: int = 0) -> list[TranscriptSegment]:
    """Parse line-oriented ``[MM:SS.mmm --> MM:SS.mmm] text`` output; other lines are ignored."""
    segments: list[TranscriptSegment] = []
    for line in content.splitlines():
        match = _TIMESTAMP_LINE_RE.match(line.strip())
        if not match:
            continue
        text = match.group(3).strip()
        if not text:
            continue
        segments.append(
            TranscriptSegment(
                text=text,
                start_ms=base_time_ms + _parse_timestamp_ms(match.group(1)),
                end_ms=base_time_ms + _parse_timestamp_ms(match.group(2)),
                speaker=PLACEHOLDER_SPEAKER,
            )
        )
    return segments


def parse_whisper_output(content: str, base_time_ms: int = 0) -> list[TranscriptSegment]:
    """Parse whisper.cpp output, falling back to the timestamped text format."""
    try:
        return parse_whisper_json(content, base_time_ms)
    except (ValueError, TypeError, AttributeError):
        return parse_timestamped_lines(content, base_time_ms)
