"""Session export as JSON, plain text, or CSV."""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from src.coaching.models import CoachingState
from src.pipeline_config import ExportFormat
from src.transcript.buffer import segment_to_dict
from src.transcript.models import TranscriptSegment
from src.utils.timefmt import format_duration

logger = logging.getLogger(__name__)


class SessionData(BaseModel):
    """Read model of one recorded session."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None
    segments: list[TranscriptSegment] = Field(default_factory=list)
    coaching_state: CoachingState = Field(default_factory=CoachingState)

    @property
    def duration_seconds(self) -> int:
        end = self.ended_at or datetime.now(UTC)
        return max(0, int((end - self.created_at).total_seconds()))


def export_json(session: SessionData) -> str:
    payload = {
        "id": str(session.id),
        "created_at": session.created_at.isoformat(),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "transcript": [segment_to_dict(s) for s in session.segments],
        "coaching_state": session.coaching_state.model_dump(mode="json"),
    }
    return json.dumps(payload, indent=2, sort_keys=True)


def export_plain_text(session: SessionData) -> str:
    lines = [
        "Sales Coach Session Export",
        f"Date: {session.created_at.strftime('%Y-%m-%d %H:%M')}",
        f"Duration: {format_duration(session.duration_seconds)}",
        "",
        "=" * 40,
        "TRANSCRIPT",
        "=" * 40,
        "",
    ]
    lines.extend(f"[{s.formatted_timestamp}] {s.speaker}: {s.text}" for s in session.segments)
    lines += ["", "=" * 40, "MEDDIC SUMMARY", "=" * 40, ""]

    for label, field in session.coaching_state.meddic.all_fields():
        if field is None:
            lines.append(f"{label}: [Not captured]")
            continue
        lines.append(f"{label}: {field.value} (Confidence: {round(field.confidence * 100)}%)")
        for quote in field.evidence or []:
            lines.append(f'  - "{quote.quote}" [{quote.formatted_range}]')
    return "\n".join(lines) + "\n"


def export_csv(session: SessionData) -> str:
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Timestamp", "Speaker", "Text"])
    for s in session.segments:
        writer.writerow([s.formatted_timestamp, s.speaker, s.text])
    return out.getvalue()


_EXPORTERS = {
    ExportFormat.JSON: export_json,
    ExportFormat.PLAIN_TEXT: export_plain_text,
    ExportFormat.CSV: export_csv,
}


def export_session(session: SessionData, fmt: ExportFormat) -> str:
    return _EXPORTERS[fmt](session)


def export_filename(fmt: ExportFormat, now: datetime | None = None) -> str:
    """``SalesCoach-<ISO timestamp with ':' replaced by '-'>.<ext>``."""
    stamp = (now or datetime.now(UTC)).replace(microsecond=0).isoformat().replace(":", "-")
    return f"SalesCoach-{stamp}.{fmt.file_extension}"


def write_export(session: SessionData, fmt: ExportFormat, directory: str | Path) -> Path:
    """Write ``session`` in ``fmt`` to ``directory`` and return the file path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(fmt)
    path.write_text(export_session(session, fmt), encoding="utf-8")
    logger.info("Exported session %s to %s", session.id, path)
    return path
