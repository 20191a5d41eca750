"""Local OpenAI-compatible backend (LM Studio) over plain httpx.

No authentication and no JSON-mode negotiation: the prompt alone asks for JSON.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.llm.base import (
    ChatMessage,
    CompletionOptions,
    InvalidResponseError,
    LLMConnectionError,
    LLMRequestError,
    LLMTimeoutError,
    complete_with_retry,
)

logger = logging.getLogger(__name__)


class LocalLLMClient:
    def __init__(
        self,
        base_url: str = "http://localhost:1234/v1",
        model: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def complete(self, messages: list[ChatMessage], options: CompletionOptions) -> str:
        payload: dict[str, Any] = {
            "messages": [m.to_dict() for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": False,
        }
        if self.model:
            payload["model"] = self.model
        return await complete_with_retry(lambda: self._post(payload), self.max_retries)

    async def _post(self, payload: dict[str, Any]) -> str:
        try:
            r = await self._client.post(f"{self.base_url}/chat/completions", json=payload)
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(self.timeout) from exc
        except httpx.HTTPError as exc:
            raise LLMConnectionError(str(exc)) from exc

        if r.status_code != 200:
            raise LLMRequestError(r.status_code, r.text)

        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InvalidResponseError("Missing choices[0].message.content") from exc
        if not isinstance(content, str):
            raise InvalidResponseError("Message content is not text")
        return content

    async def test_connection(self) -> bool:
        """True if the server lists its models."""
        try:
            r = await self._client.get(f"{self.base_url}/models", timeout=5.0)
            return r.status_code == 200
        except httpx.HTTPError:
            logger.debug("Local LLM server not reachable at %s", self.base_url)
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
