from __future__ import annotations

import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings

from src.pipeline_config import LLMMode

_LANGUAGE_RE = re.compile(r"^(auto|[a-z]{2})$")


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # LLM backends
    llm_mode: LLMMode = LLMMode.LOCAL
    local_llm_base_url: str = "http://localhost:1234/v1"
    local_llm_model: str | None = None
    cloud_llm_base_url: str = "https://api.openai.com/v1"
    cloud_llm_model: str = "gpt-4"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1024
    llm_timeout_seconds: float = 60.0
    llm_max_retries: int = 3

    # Coaching loop
    tick_interval_seconds: float = 7.0
    transcript_window_ms: int = 60_000
    max_transcript_segments: int = 1000
    prompt_dir: str = ""  # Optional directory of prompt template overrides

    # Audio + transcription
    transcription_language: str = "auto"
    chunk_duration_ms: int = 3000
    chunk_overlap_ms: int = 500
    max_buffer_seconds: int = 30
    audio_device: str | None = None
    whisper_binary_path: str = ""
    whisper_model_path: str = ""

    # Tracing + export
    tracing_enabled: bool = False
    export_dir: str = "exports"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("transcription_language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        """Accept ``"auto"`` or a two-letter ISO 639-1 code."""
        value = value.strip().lower()
        if not _LANGUAGE_RE.match(value):
            msg = f"transcription_language must be 'auto' or an ISO 639-1 code, got {value!r}"
            raise ValueError(msg)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]
