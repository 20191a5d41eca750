"""Tests for Settings, backend/export enums, and PipelineConfig."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.config import Settings
from src.pipeline_config import ExportFormat, LLMMode, PipelineConfig

# ---------------------------------------------------------------------------
# Enum tests
# ---------------------------------------------------------------------------


class TestLLMMode:
    def test_values(self) -> None:
        assert LLMMode.LOCAL.value == "local"
        assert LLMMode.CLOUD.value == "cloud"
        assert LLMMode.ANTHROPIC.value == "anthropic"

    def test_from_string(self) -> None:
        assert LLMMode("cloud") is LLMMode.CLOUD

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            LLMMode("invalid")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(LLMMode.LOCAL, str)


class TestExportFormat:
    @pytest.mark.parametrize(
        ("fmt", "ext"),
        [(ExportFormat.JSON, "json"), (ExportFormat.PLAIN_TEXT, "txt"), (ExportFormat.CSV, "csv")],
    )
    def test_file_extension(self, fmt: ExportFormat, ext: str) -> None:
        assert fmt.file_extension == ext


# ---------------------------------------------------------------------------
# Settings tests
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.llm_mode is LLMMode.LOCAL
        assert s.local_llm_base_url == "http://localhost:1234/v1"
        assert s.cloud_llm_model == "gpt-4"
        assert s.llm_temperature == 0.3
        assert s.llm_max_tokens == 1024
        assert s.tick_interval_seconds == 7.0
        assert s.transcript_window_ms == 60_000

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_MODE", "cloud")
        monkeypatch.setenv("TICK_INTERVAL_SECONDS", "3.5")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.llm_mode is LLMMode.CLOUD
        assert s.tick_interval_seconds == 3.5

    @pytest.mark.parametrize("lang", ["auto", "en", " DE "])
    def test_language_accepted(self, lang: str) -> None:
        s = Settings(_env_file=None, transcription_language=lang)  # type: ignore[call-arg]
        assert s.transcription_language == lang.strip().lower()

    @pytest.mark.parametrize("lang", ["english", "e", "en-US", ""])
    def test_language_rejected(self, lang: str) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, transcription_language=lang)  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# PipelineConfig tests
# ---------------------------------------------------------------------------


class TestPipelineConfig:
    def test_defaults(self) -> None:
        cfg = PipelineConfig()
        assert cfg.chunk_duration_ms == 3000
        assert cfg.overlap_ms == 500
        assert cfg.max_buffer_seconds == 30
        assert cfg.max_segments == 1000

    def test_immutable(self) -> None:
        cfg = PipelineConfig()
        with pytest.raises(AttributeError):
            cfg.overlap_ms = 0  # type: ignore[misc]

    def test_overlap_must_be_shorter_than_chunk(self) -> None:
        with pytest.raises(ValueError):
            PipelineConfig(chunk_duration_ms=1000, overlap_ms=1000)

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            PipelineConfig(tick_interval_seconds=0)

    def test_from_settings(self) -> None:
        s = Settings(  # type: ignore[call-arg]
            _env_file=None,
            chunk_duration_ms=4000,
            chunk_overlap_ms=1000,
            transcription_language="fr",
            max_transcript_segments=50,
        )
        cfg = PipelineConfig.from_settings(s)
        assert cfg.chunk_duration_ms == 4000
        assert cfg.overlap_ms == 1000
        assert cfg.language == "fr"
        assert cfg.max_segments == 50
