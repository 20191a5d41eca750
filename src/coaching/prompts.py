"""Coaching prompt templates and the builder that fills them.

Templates may be overridden at runtime by a :class:`PromptSource` (for
example a directory of ``<name>.txt`` files). Any failure to fetch or render
an override falls back to the built-in templates below.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol

from src.coaching.checklist import DEFAULT_CHECKLIST, ProcessChecklist
from src.coaching.models import CoachingState
from src.llm.base import ChatMessage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_NAME = "coaching-system-prompt"
USER_PROMPT_NAME = "coaching-user-prompt"

RESPONSE_SCHEMA = """\
{
  "stage": {"name": "<stage name>", "confidence": 0.0-1.0, "rationale": "<why>"} | null,
  "suggested_questions": [
    {"question": "<question to ask>", "why": "<reason>", "priority": 1-3}
  ],
  "meddic_updates": {
    "metrics": {"value": "...", "confidence": 0.0-1.0,
                "evidence": [{"quote": "...", "start_ms": 0, "end_ms": 0}]} | null,
    "economic_buyer": {...} | null,
    "decision_criteria": {...} | null,
    "decision_process": {...} | null,
    "identify_pain": {...} | null,
    "champion": {...} | null
  }
}"""

SYSTEM_PROMPT_TEMPLATE = """\
You are an expert sales coach listening to a live sales call. Analyze the \
transcript and give the salesperson real-time guidance.

Respond with a single JSON object matching this schema exactly:
{{schema}}

Guidelines:
- Identify the current stage of the sales process from the checklist below.
- Suggest 1-3 questions the salesperson should ask next. Priority 1 is most urgent.
- Update MEDDIC fields only when the transcript gives clear evidence; use null otherwise.
- Quote the transcript as evidence, with start_ms and end_ms offsets.
- Confidence values are between 0.0 and 1.0.
- Return only the JSON object, with no markdown and no explanation.

Sales process checklist:
{{checklist}}
"""

USER_PROMPT_TEMPLATE = """\
Current state:
{{state}}

Transcript context (last {{window_seconds}} seconds):
{{windowed_transcript}}

New transcript since last analysis:
{{delta_transcript}}

Analyze and provide updated coaching guidance. Return valid JSON only."""

REPAIR_SYSTEM_PROMPT = (
    "You are a JSON repair assistant. Fix the invalid JSON to match the required schema."
)

REPAIR_PROMPT_TEMPLATE = """\
The previous response was invalid JSON. Error: {error}

Invalid response:
{response}

Please return valid JSON matching the required schema. Return only the JSON object, no explanation."""

NO_TRANSCRIPT = "[No transcript yet]"
NO_NEW_CONTENT = "[No new content]"


def render_template(template: str, values: dict[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown placeholders are left as-is."""
    for key, value in values.items():
        template = template.replace("{{" + key + "}}", value)
    return template


class PromptSource(Protocol):
    """Supplier of externally managed prompt templates."""

    async def get_prompt(self, name: str) -> str: ...


class FilePromptSource:
    """Reads ``<name>.txt`` templates from a directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    async def get_prompt(self, name: str) -> str:
        path = self.directory / f"{name}.txt"
        return await asyncio.to_thread(path.read_text, encoding="utf-8")


class PromptBuilder:
    """Builds the system/user message pair for one coaching tick."""

    def __init__(
        self,
        checklist: ProcessChecklist = DEFAULT_CHECKLIST,
        prompt_source: PromptSource | None = None,
    ) -> None:
        self.checklist = checklist
        self.prompt_source = prompt_source

    def _system_values(self) -> dict[str, str]:
        return {"schema": RESPONSE_SCHEMA, "checklist": self.checklist.to_prompt_string()}

    def _user_values(
        self, state: CoachingState, windowed: str, delta: str, window_ms: int
    ) -> dict[str, str]:
        return {
            "state": json.dumps(state.summary(), indent=2, sort_keys=True),
            "window_seconds": str(window_ms // 1000),
            "windowed_transcript": windowed.strip() or NO_TRANSCRIPT,
            "delta_transcript": delta.strip() or NO_NEW_CONTENT,
        }

    def build_system_prompt(self, template: str = SYSTEM_PROMPT_TEMPLATE) -> str:
        return render_template(template, self._system_values())

    def build_user_prompt(
        self,
        state: CoachingState,
        windowed: str,
        delta: str,
        window_ms: int,
        template: str = USER_PROMPT_TEMPLATE,
    ) -> str:
        return render_template(template, self._user_values(state, windowed, delta, window_ms))

    @staticmethod
    def build_repair_messages(invalid_response: str, error: str) -> list[ChatMessage]:
        """Messages for the single repair round-trip."""
        prompt = REPAIR_PROMPT_TEMPLATE.format(error=error, response=invalid_response[:500])
        return [ChatMessage.system(REPAIR_SYSTEM_PROMPT), ChatMessage.user(prompt)]

    async def build_messages(
        self, state: CoachingState, windowed: str, delta: str, window_ms: int
    ) -> list[ChatMessage]:
        """Build the tick prompt, preferring external templates when available."""
        system_template = SYSTEM_PROMPT_TEMPLATE
        user_template = USER_PROMPT_TEMPLATE
        if self.prompt_source is not None:
            try:
                system_template = await self.prompt_source.get_prompt(SYSTEM_PROMPT_NAME)
                user_template = await self.prompt_source.get_prompt(USER_PROMPT_NAME)
            except Exception as exc:
                logger.warning("Prompt templates unavailable, using built-in prompts: %s", exc)
                system_template = SYSTEM_PROMPT_TEMPLATE
                user_template = USER_PROMPT_TEMPLATE

        return [
            ChatMessage.system(self.build_system_prompt(system_template)),
            ChatMessage.user(
                self.build_user_prompt(state, windowed, delta, window_ms, user_template)
            ),
        ]
