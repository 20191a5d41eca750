"""Coaching reconciler: turns new transcript content into an updated CoachingState."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from src.coaching.checklist import DEFAULT_CHECKLIST, ProcessChecklist
from src.coaching.models import CoachingResponse, CoachingState
from src.coaching.prompts import PromptBuilder, PromptSource
from src.coaching.validator import ResponseValidationError, ResponseValidator
from src.llm.base import CompletionOptions, LLMClient
from src.llm.tracing import TraceSink, safe_record_event
from src.transcript.buffer import TranscriptBuffer

logger = logging.getLogger(__name__)


class CoachEngineError(Exception):
    """Base class for reconciler failures."""


class AlreadyProcessingError(CoachEngineError):
    def __init__(self) -> None:
        super().__init__("Coaching analysis is already in progress")


class ValidationFailedError(CoachEngineError):
    def __init__(self, error: ResponseValidationError) -> None:
        super().__init__(f"Coaching response failed validation after repair: {error}")
        self.error = error


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CoachEngine:
    """Runs one analysis per tick and merges the result into the coaching state.

    The engine owns the "last successful analysis" marker that defines the
    delta text; a failed tick leaves both the marker and the state untouched.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        *,
        checklist: ProcessChecklist = DEFAULT_CHECKLIST,
        prompt_source: PromptSource | None = None,
        tracer: TraceSink | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        validator: ResponseValidator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.llm_client = llm_client
        self.prompt_builder = PromptBuilder(checklist, prompt_source)
        self.tracer = tracer
        self.options = CompletionOptions(temperature=temperature, max_tokens=max_tokens, json_mode=True)
        self.validator = validator or ResponseValidator()
        self._clock = clock
        self._last_analysis_time: datetime | None = None
        self._processing = False

    @property
    def last_analysis_time(self) -> datetime | None:
        return self._last_analysis_time

    @property
    def is_processing(self) -> bool:
        return self._processing

    def delta_text(self, transcript: TranscriptBuffer) -> str:
        if self._last_analysis_time is None:
            return transcript.full_text
        return transcript.delta_text(self._last_analysis_time)

    def has_new_content(self, transcript: TranscriptBuffer) -> bool:
        return bool(self.delta_text(transcript).strip())

    def reset(self) -> None:
        self._last_analysis_time = None

    async def analyze(
        self, current_state: CoachingState, transcript: TranscriptBuffer, window_ms: int
    ) -> CoachingState:
        """Analyze new transcript content and return the merged state.

        Returns ``current_state`` itself, without calling the LLM, when there
        is no new content.

        Raises:
            AlreadyProcessingError: If a previous call has not returned.
            ValidationFailedError: If the response is invalid even after repair.
            LLMError: If the LLM call fails after retries.
        """
        if self._processing:
            raise AlreadyProcessingError()
        self._processing = True
        try:
            return await self._analyze(current_state, transcript, window_ms)
        finally:
            self._processing = False

    async def _analyze(
        self, current_state: CoachingState, transcript: TranscriptBuffer, window_ms: int
    ) -> CoachingState:
        # Segments finalized while this tick runs belong to the next delta.
        tick_started = self._clock()
        windowed = transcript.windowed_text(window_ms)
        delta = self.delta_text(transcript)
        if not delta.strip():
            logger.debug("No new transcript content; skipping analysis")
            return current_state

        messages = await self.prompt_builder.build_messages(current_state, windowed, delta, window_ms)
        safe_record_event(
            self.tracer,
            "coaching-tick",
            {"windowed_chars": len(windowed), "delta_chars": len(delta), "window_ms": window_ms},
        )

        raw = await self.llm_client.complete(messages, self.options)
        response = await self._validate_or_repair(raw)

        new_state = current_state.apply_updates(response, now=self._clock())
        self._last_analysis_time = tick_started
        safe_record_event(
            self.tracer,
            "coaching-update",
            {
                "stage": new_state.stage.name if new_state.stage else None,
                "questions": len(new_state.suggested_questions),
                "meddic_completion": new_state.meddic.completion_percentage,
            },
        )
        logger.info(
            "Coaching updated: stage=%s, %d questions, MEDDIC %d/6",
            new_state.stage.name if new_state.stage else "-",
            len(new_state.suggested_questions),
            new_state.meddic.filled_count,
        )
        return new_state

    async def _validate_or_repair(self, raw: str) -> CoachingResponse:
        try:
            return self.validator.validate_or_extract(raw)
        except ResponseValidationError as exc:
            logger.warning("Invalid coaching response, attempting repair: %s", exc)
            safe_record_event(self.tracer, "coaching-repair", {"error": str(exc)})
            messages = self.prompt_builder.build_repair_messages(raw, str(exc))

        repaired = await self.llm_client.complete(messages, self.options)
        try:
            return self.validator.validate_or_extract(repaired)
        except ResponseValidationError as exc:
            raise ValidationFailedError(exc) from exc
