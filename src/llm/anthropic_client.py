"""Anthropic backend. JSON output is requested through the prompt only."""

from __future__ import annotations

import logging

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock

from src.llm.base import (
    APIKeyMissingError,
    ChatMessage,
    CompletionOptions,
    InvalidResponseError,
    LLMConnectionError,
    LLMRequestError,
    LLMTimeoutError,
    Role,
    complete_with_retry,
)

logger = logging.getLogger(__name__)


class AnthropicLLMClient:
    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
        max_retries: int = 3,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(self, messages: list[ChatMessage], options: CompletionOptions) -> str:
        client = self._client
        if client is None:
            raise APIKeyMissingError("anthropic")
        return await complete_with_retry(
            lambda: self._create(client, messages, options), self.max_retries
        )

    async def _create(
        self, client: AsyncAnthropic, messages: list[ChatMessage], options: CompletionOptions
    ) -> str:
        # System messages go in the top-level ``system`` parameter.
        system = "\n\n".join(m.content for m in messages if m.role == Role.SYSTEM)
        turns = [m.to_dict() for m in messages if m.role != Role.SYSTEM]
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                system=system,
                messages=turns,  # type: ignore[arg-type]
            )
        except anthropic.APITimeoutError as exc:
            raise LLMTimeoutError(self.timeout) from exc
        except anthropic.APIConnectionError as exc:
            raise LLMConnectionError(str(exc)) from exc
        except anthropic.APIStatusError as exc:
            raise LLMRequestError(exc.status_code, exc.message) from exc

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        if not text:
            raise InvalidResponseError("No text content in message")
        return text

    async def test_connection(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.models.list(limit=1)
        except anthropic.AnthropicError as exc:
            logger.warning("Anthropic connection test failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
