"""Validation of raw LLM output against the coaching response schema."""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from src.coaching.models import MEDDIC_FIELD_NAMES, CoachingResponse


class ResponseValidationError(Exception):
    """Base class for coaching response validation failures."""


class DecodingError(ResponseValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to decode coaching response: {detail}")


class InvalidConfidenceError(ResponseValidationError):
    def __init__(self, path: str, value: Any) -> None:
        super().__init__(f"Confidence at {path} must be between 0 and 1, got {value!r}")
        self.path = path
        self.value = value


class InvalidPriorityError(ResponseValidationError):
    def __init__(self, index: int, value: Any) -> None:
        super().__init__(
            f"Priority of suggested_questions[{index}] must be 1, 2 or 3, got {value!r}"
        )
        self.index = index
        self.value = value


def strip_code_fences(text: str) -> str:
    """Remove markdown ``` fences (with or without a language tag)."""
    text = text.strip()
    if text.startswith("```"):
        lines = [ln for ln in text.split("\n") if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def extract_json(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in ``text``, or None.

    Braces inside string literals are counted like any other brace.
    """
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _check_confidence(value: Any, path: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return  # type errors are reported by the schema
    if not 0.0 <= value <= 1.0:
        raise InvalidConfidenceError(path, value)


def _check_ranges(data: dict[str, Any]) -> None:
    stage = data.get("stage")
    if isinstance(stage, dict):
        _check_confidence(stage.get("confidence"), "stage.confidence")

    questions = data.get("suggested_questions")
    if isinstance(questions, list):
        for i, q in enumerate(questions):
            if not isinstance(q, dict) or "priority" not in q:
                continue
            priority = q["priority"]
            if isinstance(priority, bool) or priority not in (1, 2, 3):
                raise InvalidPriorityError(i, priority)

    updates = data.get("meddic_updates")
    if isinstance(updates, dict):
        for name in MEDDIC_FIELD_NAMES:
            field = updates.get(name)
            if isinstance(field, dict):
                _check_confidence(field.get("confidence"), f"meddic_updates.{name}.confidence")


class ResponseValidator:
    """Parses and checks one coaching response.

    Out-of-range confidences and priorities are rejected here; the models
    themselves would otherwise clamp them silently.
    """

    def validate(self, text: str) -> CoachingResponse:
        """Validate raw model output.

        Raises:
            DecodingError: Not JSON, not an object, or schema mismatch.
            InvalidConfidenceError: A confidence outside [0, 1].
            InvalidPriorityError: A priority outside {1, 2, 3}.
        """
        cleaned = strip_code_fences(text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise DecodingError(str(exc)) from exc
        if not isinstance(data, dict):
            raise DecodingError(f"expected a JSON object, got {type(data).__name__}")

        _check_ranges(data)

        try:
            return CoachingResponse.model_validate(data)
        except ValidationError as exc:
            raise DecodingError(str(exc)) from exc

    def validate_or_extract(self, text: str) -> CoachingResponse:
        """Validate ``text``; on failure retry once on its first balanced JSON span.

        The first error is raised if extraction finds nothing new or also fails.
        """
        try:
            return self.validate(text)
        except ResponseValidationError as first_error:
            candidate = extract_json(text)
            if candidate is None or candidate == strip_code_fences(text):
                raise
            try:
                return self.validate(candidate)
            except ResponseValidationError:
                raise first_error from None
