"""LLM chat-completion boundary: message types, client protocol, errors, retry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 422})


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(Role.ASSISTANT, content)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class CompletionOptions:
    temperature: float = 0.3
    max_tokens: int = 1024
    json_mode: bool = True


class LLMClient(Protocol):
    """Capability interface implemented by every backend and by the tracing decorator."""

    async def complete(self, messages: list[ChatMessage], options: CompletionOptions) -> str: ...

    async def test_connection(self) -> bool: ...

    async def aclose(self) -> None:
        """Release pooled connections; the client is unusable afterwards."""


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """Base class for LLM boundary failures."""


class LLMConnectionError(LLMError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"Could not connect to the LLM service. {detail}".strip())


class LLMTimeoutError(LLMError):
    def __init__(self, timeout_seconds: float | None = None) -> None:
        suffix = f" after {timeout_seconds:g}s" if timeout_seconds is not None else ""
        super().__init__(f"LLM request timed out{suffix}")


class InvalidResponseError(LLMError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"Invalid response from the LLM service. {detail}".strip())


class LLMRequestError(LLMError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        message = f"LLM request failed with HTTP {status_code}"
        if detail:
            message += f": {detail[:300]}"
        super().__init__(message)
        self.status_code = status_code


class InvalidJSONError(LLMError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"LLM returned invalid JSON. {detail}".strip())


class APIKeyMissingError(LLMError):
    def __init__(self, backend: str = "cloud") -> None:
        super().__init__(f"API key is missing for the {backend} LLM backend")


def is_retryable(error: Exception) -> bool:
    """Whether another attempt could plausibly succeed."""
    if isinstance(error, (APIKeyMissingError, InvalidJSONError)):
        return False
    if isinstance(error, LLMRequestError):
        return error.status_code not in NON_RETRYABLE_STATUS_CODES
    return isinstance(error, LLMError)


async def complete_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_retries`` times with ``2**attempt`` second backoff.

    ``attempt`` counts from zero, so three attempts wait 1 s and then 2 s.

    Args:
        operation: Zero-argument coroutine factory performing one attempt.
        max_retries: Total number of attempts.
        sleep: Awaitable sleep function; injectable for tests.

    Raises:
        LLMError: The last error, or the first non-retryable one.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except LLMError as exc:
            if not is_retryable(exc) or attempt + 1 >= max_retries:
                raise
            delay = 2**attempt
            logger.warning(
                "LLM attempt %d/%d failed (%s); retrying in %ds", attempt + 1, max_retries, exc, delay
            )
            attempt += 1
            await sleep(delay)
