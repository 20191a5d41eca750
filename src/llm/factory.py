"""Select and build the configured LLM backend."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.llm.anthropic_client import AnthropicLLMClient
from src.llm.base import LLMClient
from src.llm.local_client import LocalLLMClient
from src.llm.openai_client import OpenAILLMClient
from src.llm.tracing import TraceSink, TracingLLMClient
from src.pipeline_config import LLMMode

if TYPE_CHECKING:
    from src.config import Settings


def _model_name(settings: Settings) -> str:
    if settings.llm_mode == LLMMode.CLOUD:
        return settings.cloud_llm_model
    if settings.llm_mode == LLMMode.ANTHROPIC:
        return settings.llm_model
    return settings.local_llm_model or "local-model"


def create_llm_client(settings: Settings, sink: TraceSink | None = None) -> LLMClient:
    """Build the backend for ``settings.llm_mode``, wrapped for tracing.

    Missing credentials are not an error here; the backend raises
    ``APIKeyMissingError`` on its first call.
    """
    inner: LLMClient
    if settings.llm_mode == LLMMode.CLOUD:
        inner = OpenAILLMClient(
            api_key=settings.openai_api_key,
            model=settings.cloud_llm_model,
            base_url=settings.cloud_llm_base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    elif settings.llm_mode == LLMMode.ANTHROPIC:
        inner = AnthropicLLMClient(
            api_key=settings.anthropic_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    else:
        inner = LocalLLMClient(
            base_url=settings.local_llm_base_url,
            model=settings.local_llm_model,
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    return TracingLLMClient(inner, sink, model_name=_model_name(settings))
