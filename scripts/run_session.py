"""Run a live coaching session from the terminal until Ctrl+C, then export it."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.coaching.models import CoachingState
from src.config import get_settings
from src.core.session import CallSession
from src.export.formats import write_export
from src.llm.tracing import LoggingTraceSink
from src.pipeline_config import ExportFormat
from src.transcript.buffer import TranscriptBuffer


def print_transcript(buffer: TranscriptBuffer) -> None:
    segments = buffer.segments
    if segments:
        last = segments[-1]
        print(f"[{last.formatted_timestamp}] {last.speaker}: {last.text}")


def print_coaching(state: CoachingState) -> None:
    stage = state.stage.name if state.stage else "Unknown"
    print(f"\n--- Stage: {stage} | MEDDIC {state.meddic.filled_count}/6 ---")
    for q in state.suggested_questions:
        print(f"  ({q.priority_display}) {q.question}")
    print()


async def run_session(export_format: ExportFormat | None, seconds: float | None) -> None:
    settings = get_settings()
    tracer = LoggingTraceSink() if settings.tracing_enabled else None
    session = CallSession(
        settings,
        tracer=tracer,
        on_transcript_update=print_transcript,
        on_coaching_update=print_coaching,
        on_error=lambda message: print(f"  ERROR: {message}"),
    )

    await session.start()
    print("Listening... press Ctrl+C to stop.")
    try:
        if seconds is not None:
            await asyncio.sleep(seconds)
        else:
            await asyncio.Event().wait()
    except asyncio.CancelledError:
        pass
    finally:
        await session.stop()

    if export_format is not None:
        path = write_export(session.snapshot(), export_format, settings.export_dir)
        print(f"\nSaved session to {path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--export",
        choices=[f.value for f in ExportFormat],
        default=None,
        help="Export format written when the session ends",
    )
    parser.add_argument("--seconds", type=float, default=None, help="Stop after N seconds")
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(
            run_session(ExportFormat(args.export) if args.export else None, args.seconds)
        )
    except KeyboardInterrupt:
        print("\nStopped.")
