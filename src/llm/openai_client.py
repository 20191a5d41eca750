"""Cloud OpenAI-compatible backend using the openai SDK with JSON mode."""

from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from src.llm.base import (
    APIKeyMissingError,
    ChatMessage,
    CompletionOptions,
    InvalidJSONError,
    InvalidResponseError,
    LLMConnectionError,
    LLMRequestError,
    LLMTimeoutError,
    complete_with_retry,
)

logger = logging.getLogger(__name__)


class OpenAILLMClient:
    """Bearer-token backend. SDK retries are disabled; retry policy lives in :mod:`src.llm.base`."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        max_retries: int = 3,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._api_key = api_key
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
            )

    async def complete(self, messages: list[ChatMessage], options: CompletionOptions) -> str:
        client = self._client
        if client is None:
            raise APIKeyMissingError("cloud")
        return await complete_with_retry(
            lambda: self._create(client, messages, options), self.max_retries
        )

    async def _create(
        self, client: AsyncOpenAI, messages: list[ChatMessage], options: CompletionOptions
    ) -> str:
        kwargs: dict[str, Any] = {}
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[m.to_dict() for m in messages],  # type: ignore[misc]
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                **kwargs,  # type: ignore[arg-type]
            )
        except openai.APITimeoutError as exc:
            raise LLMTimeoutError(self.timeout) from exc
        except openai.APIConnectionError as exc:
            raise LLMConnectionError(str(exc)) from exc
        except openai.APIStatusError as exc:
            raise LLMRequestError(exc.status_code, exc.message) from exc

        if not response.choices or response.choices[0].message.content is None:
            raise InvalidResponseError("No message content in completion")
        content = response.choices[0].message.content
        if options.json_mode:
            # JSON mode guarantees an object; anything else is a backend fault.
            try:
                json.loads(content)
            except json.JSONDecodeError as exc:
                raise InvalidJSONError(str(exc)) from exc
        return content

    async def test_connection(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.models.list()
        except openai.OpenAIError as exc:
            logger.warning("Cloud LLM connection test failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
