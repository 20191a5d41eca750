"""Call session orchestrator wiring capture, transcription, scheduling and coaching."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from src.audio.capture import AudioCapture
from src.coaching.engine import CoachEngine
from src.coaching.models import CoachingState
from src.coaching.prompts import FilePromptSource, PromptSource
from src.config import Settings
from src.core.scheduler import TickScheduler
from src.export.formats import SessionData
from src.llm.base import LLMClient
from src.llm.factory import create_llm_client
from src.llm.tracing import TraceSink, safe_flush
from src.pipeline_config import PipelineConfig
from src.stt.transcriber import (
    TranscriberConfig,
    WhisperTranscriber,
    resolve_binary_path,
    resolve_model_path,
)
from src.transcript.buffer import TranscriptBuffer
from src.transcript.models import TranscriptEvent, TranscriptEventKind

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class Transcriber(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def feed_audio(self, samples: bytes) -> None: ...

    def events(self) -> AsyncIterator[TranscriptEvent]: ...


class Capture(Protocol):
    def set_handler(self, handler: Callable[[bytes], None]) -> None: ...

    def start(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...


TranscriberFactory = Callable[[], Transcriber]


def whisper_transcriber_factory(settings: Settings, pipeline: PipelineConfig) -> TranscriberFactory:
    """Factory resolving the whisper binary and model at session start."""

    def build() -> Transcriber:
        return WhisperTranscriber(
            TranscriberConfig(
                model_path=resolve_model_path(settings),
                binary_path=resolve_binary_path(settings),
                language=pipeline.language,
                chunk_duration_ms=pipeline.chunk_duration_ms,
                overlap_ms=pipeline.overlap_ms,
                max_buffer_seconds=pipeline.max_buffer_seconds,
            )
        )

    return build


class CallSession:
    """One live call: ``IDLE -> RUNNING <-> PAUSED -> STOPPED``.

    Control calls made in the wrong state are silent no-ops. Errors raised by
    :meth:`start` leave the session IDLE; errors during a tick are reported
    through ``on_error`` and the session keeps running.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        tracer: TraceSink | None = None,
        llm_client: LLMClient | None = None,
        capture: Capture | None = None,
        transcriber_factory: TranscriberFactory | None = None,
        prompt_source: PromptSource | None = None,
        on_transcript_update: Callable[[TranscriptBuffer], None] | None = None,
        on_coaching_update: Callable[[CoachingState], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self.id = uuid.uuid4()
        self.settings = settings
        self.pipeline = PipelineConfig.from_settings(settings)
        self.tracer = tracer

        if prompt_source is None and settings.prompt_dir:
            prompt_source = FilePromptSource(settings.prompt_dir)

        self.buffer = TranscriptBuffer(max_segments=self.pipeline.max_segments)
        self.coaching_state = CoachingState()
        # A client built here is owned, and closed, by the session.
        self._owns_llm_client = llm_client is None
        self.engine = CoachEngine(
            llm_client or create_llm_client(settings, tracer),
            prompt_source=prompt_source,
            tracer=tracer,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
        self.scheduler = TickScheduler(
            self.pipeline.tick_interval_seconds,
            on_tick=self._on_tick,
            should_skip=self._should_skip,
        )
        self._capture: Capture = capture or AudioCapture(settings.audio_device)
        self._transcriber_factory = transcriber_factory or whisper_transcriber_factory(
            settings, self.pipeline
        )
        self._transcriber: Transcriber | None = None
        self._listener: asyncio.Task[None] | None = None
        self._state = SessionState.IDLE
        self._started_at: datetime | None = None
        self._ended_at: datetime | None = None

        self.on_transcript_update = on_transcript_update
        self.on_coaching_update = on_coaching_update
        self.on_error = on_error
        self.last_error: str | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    async def start(self) -> None:
        """Start transcription, capture and the coaching scheduler.

        Raises:
            ResourceMissingError: If the whisper binary or model is missing.
            AudioCaptureError: If the microphone cannot be opened.
        """
        if self._state != SessionState.IDLE:
            return

        transcriber = self._transcriber_factory()
        await transcriber.start()

        loop = asyncio.get_running_loop()

        def on_audio(samples: bytes) -> None:
            # Runs on the audio thread; hand off to the loop without blocking.
            loop.call_soon_threadsafe(transcriber.feed_audio, samples)

        self._capture.set_handler(on_audio)
        try:
            self._capture.start()
        except Exception:
            await transcriber.stop()
            raise

        self._transcriber = transcriber
        self._listener = asyncio.create_task(self._listen(transcriber))
        self.scheduler.start()
        self._started_at = datetime.now(UTC)
        self._state = SessionState.RUNNING
        logger.info("Session %s started", self.id)

    def pause(self) -> None:
        if self._state != SessionState.RUNNING:
            return
        self.scheduler.pause()
        self._capture.pause()
        self._state = SessionState.PAUSED
        logger.info("Session %s paused", self.id)

    def resume(self) -> None:
        if self._state != SessionState.PAUSED:
            return
        self._capture.resume()
        self.scheduler.resume()
        self._state = SessionState.RUNNING
        logger.info("Session %s resumed", self.id)

    async def stop(self) -> None:
        if self._state not in (SessionState.RUNNING, SessionState.PAUSED):
            return
        self.scheduler.stop()
        if self._transcriber is not None:
            await self._transcriber.stop()
        self._capture.stop()
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await safe_flush(self.tracer)
        if self._owns_llm_client:
            await self.engine.llm_client.aclose()
        self._ended_at = datetime.now(UTC)
        self._state = SessionState.STOPPED
        logger.info("Session %s stopped", self.id)

    def snapshot(self) -> SessionData:
        """Current session contents as an export read model."""
        return SessionData(
            id=self.id,
            created_at=self._started_at or datetime.now(UTC),
            ended_at=self._ended_at,
            segments=self.buffer.segments,
            coaching_state=self.coaching_state,
        )

    async def _listen(self, transcriber: Transcriber) -> None:
        async for event in transcriber.events():
            self.handle_transcript_event(event)

    def handle_transcript_event(self, event: TranscriptEvent) -> None:
        if event.kind == TranscriptEventKind.FINAL and event.segment is not None:
            self.buffer.append(event.segment)
        elif event.kind == TranscriptEventKind.PARTIAL:
            self.buffer.set_in_progress(event.text)
        elif event.kind == TranscriptEventKind.ERROR:
            self._report_error(event.error or RuntimeError(event.text))
            return
        self._notify(self.on_transcript_update, self.buffer)

    async def _should_skip(self) -> bool:
        return not self.engine.has_new_content(self.buffer)

    async def _on_tick(self) -> None:
        try:
            new_state = await self.engine.analyze(
                self.coaching_state, self.buffer, self.pipeline.transcript_window_ms
            )
        except Exception as exc:
            self._report_error(exc)
            return

        if new_state is not self.coaching_state:
            self.coaching_state = new_state
            self.last_error = None
            self._notify(self.on_coaching_update, new_state)

    def _report_error(self, error: BaseException) -> None:
        self.last_error = str(error)
        logger.error("Session %s error: %s", self.id, error)
        self._notify(self.on_error, self.last_error)

    @staticmethod
    def _notify(callback: Callable | None, payload: object) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Session observer callback failed")
