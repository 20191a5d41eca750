"""Tests for prompt templates and the file-backed prompt source."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.coaching.models import CoachingState
from src.coaching.prompts import (
    NO_NEW_CONTENT,
    NO_TRANSCRIPT,
    FilePromptSource,
    PromptBuilder,
    render_template,
)


class TestRenderTemplate:
    def test_substitutes_known_placeholders(self) -> None:
        assert render_template("{{a}} and {{b}}", {"a": "1"}) == "1 and {{b}}"


class TestPromptBuilder:
    def test_placeholders_for_empty_transcript(self) -> None:
        prompt = PromptBuilder().build_user_prompt(CoachingState(), "", " ", 30_000)
        assert "(last 30 seconds)" in prompt
        assert NO_TRANSCRIPT in prompt
        assert NO_NEW_CONTENT in prompt
        assert prompt.endswith("Return valid JSON only.")

    def test_system_prompt_has_schema_and_checklist(self) -> None:
        prompt = PromptBuilder().build_system_prompt()
        assert '"meddic_updates"' in prompt
        assert "6. Closing" in prompt
        assert "{{" not in prompt

    def test_repair_truncates_invalid_response(self) -> None:
        messages = PromptBuilder.build_repair_messages("x" * 2000, "Expecting value")
        user = messages[1].content
        assert "Error: Expecting value" in user
        assert "x" * 500 in user
        assert "x" * 501 not in user


class TestFilePromptSource:
    @pytest.mark.asyncio
    async def test_reads_named_file(self, tmp_path: Path) -> None:
        (tmp_path / "coaching-user-prompt.txt").write_text("Delta: {{delta_transcript}}", encoding="utf-8")
        source = FilePromptSource(tmp_path)
        assert await source.get_prompt("coaching-user-prompt") == "Delta: {{delta_transcript}}"

    @pytest.mark.asyncio
    async def test_missing_file_falls_back(self, tmp_path: Path) -> None:
        builder = PromptBuilder(prompt_source=FilePromptSource(tmp_path))
        messages = await builder.build_messages(CoachingState(), "w", "d", 60_000)
        assert "Sales process checklist" in messages[0].content
        assert "New transcript since last analysis:\nd" in messages[1].content
