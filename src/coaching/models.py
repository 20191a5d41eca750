"""Pydantic models for coaching responses and the merged coaching state.

Field names match the JSON wire contract returned by the LLM.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.utils.timefmt import format_range

MEDDIC_FIELD_NAMES = (
    "metrics",
    "economic_buyer",
    "decision_criteria",
    "decision_process",
    "identify_pain",
    "champion",
)

MEDDIC_LABELS = {
    "metrics": "Metrics",
    "economic_buyer": "Economic Buyer",
    "decision_criteria": "Decision Criteria",
    "decision_process": "Decision Process",
    "identify_pain": "Identify Pain",
    "champion": "Champion",
}

PRIORITY_LABELS = {1: "High", 2: "Medium", 3: "Low"}


def _clamp_unit(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class EvidenceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    quote: str
    start_ms: int
    end_ms: int

    @property
    def formatted_range(self) -> str:
        return format_range(self.start_ms, self.end_ms)


class MEDDICField(BaseModel):
    """One qualification field; confidence is clamped to [0, 1] on construction."""

    model_config = ConfigDict(frozen=True)

    value: str
    confidence: float
    evidence: list[EvidenceQuote] | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


def merge_field(current: MEDDICField | None, incoming: MEDDICField | None) -> MEDDICField | None:
    """Keep the higher-confidence field; on a tie the incoming one wins.

    A confidently wrong early value cannot be replaced by a later, less
    confident correction.
    """
    if incoming is None:
        return current
    if current is None:
        return incoming
    return incoming if incoming.confidence >= current.confidence else current


class MEDDICData(BaseModel):
    model_config = ConfigDict(frozen=True)

    metrics: MEDDICField | None = None
    economic_buyer: MEDDICField | None = None
    decision_criteria: MEDDICField | None = None
    decision_process: MEDDICField | None = None
    identify_pain: MEDDICField | None = None
    champion: MEDDICField | None = None

    def merge(self, other: MEDDICData) -> MEDDICData:
        """Return a new instance merged field-by-field with :func:`merge_field`."""
        return MEDDICData(
            **{name: merge_field(getattr(self, name), getattr(other, name)) for name in MEDDIC_FIELD_NAMES}
        )

    def all_fields(self) -> list[tuple[str, MEDDICField | None]]:
        """(display label, field) pairs in MEDDIC order."""
        return [(MEDDIC_LABELS[name], getattr(self, name)) for name in MEDDIC_FIELD_NAMES]

    @property
    def filled_count(self) -> int:
        return sum(1 for name in MEDDIC_FIELD_NAMES if getattr(self, name) is not None)

    @property
    def completion_percentage(self) -> float:
        return self.filled_count / len(MEDDIC_FIELD_NAMES)


class StageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    confidence: float
    rationale: str

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


class SuggestedQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    question: str
    why: str = ""
    priority: int = 2

    @field_validator("priority")
    @classmethod
    def _clamp_priority(cls, v: int) -> int:
        return min(max(int(v), 1), 3)

    @property
    def priority_display(self) -> str:
        return PRIORITY_LABELS[self.priority]


class CoachingResponse(BaseModel):
    """Structured output returned by the LLM for one tick."""

    stage: StageInfo | None = None
    suggested_questions: list[SuggestedQuestion]
    meddic_updates: MEDDICData


class CoachingState(BaseModel):
    """Merged coaching guidance for a session. Replaced, never mutated in place."""

    model_config = ConfigDict(frozen=True)

    stage: StageInfo | None = None
    suggested_questions: list[SuggestedQuestion] = Field(default_factory=list)
    meddic: MEDDICData = Field(default_factory=MEDDICData)
    last_updated: datetime | None = None

    def apply_updates(self, response: CoachingResponse, now: datetime | None = None) -> CoachingState:
        """Merge one validated response into a new state.

        The stage is replaced only if the response carries one; suggested
        questions are replaced wholesale; MEDDIC fields are merged.
        """
        return self.model_copy(
            update={
                "stage": response.stage if response.stage is not None else self.stage,
                "suggested_questions": list(response.suggested_questions),
                "meddic": self.meddic.merge(response.meddic_updates),
                "last_updated": now or datetime.now(UTC),
            }
        )

    def summary(self) -> dict[str, str]:
        """Compact state summary embedded in the user prompt."""
        return {
            "current_stage": self.stage.name if self.stage else "Unknown",
            "meddic_completion": f"{round(self.meddic.completion_percentage * 100)}%",
        }
