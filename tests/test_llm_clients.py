"""Tests for the LLM boundary: retry policy, backends, tracing and factory."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from anthropic.types import TextBlock

from src.config import Settings
from src.llm.anthropic_client import AnthropicLLMClient
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
    is_retryable,
)
from src.llm.factory import create_llm_client
from src.llm.local_client import LocalLLMClient
from src.llm.openai_client import OpenAILLMClient
from src.llm.tracing import LoggingTraceSink, TracingLLMClient, estimate_tokens
from src.pipeline_config import LLMMode

MESSAGES = [ChatMessage.system("You are a coach."), ChatMessage.user("Analyze this.")]
OPTIONS = CompletionOptions()


def chat_response(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (LLMConnectionError(), True),
            (LLMTimeoutError(60), True),
            (InvalidResponseError(), True),
            (LLMRequestError(500), True),
            (LLMRequestError(429), True),
            (LLMRequestError(401), False),
            (LLMRequestError(403), False),
            (LLMRequestError(400), False),
            (APIKeyMissingError(), False),
            (InvalidJSONError(), False),
            (ValueError("not an LLM error"), False),
        ],
    )
    def test_is_retryable(self, error: Exception, expected: bool) -> None:
        assert is_retryable(error) is expected

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[LLMConnectionError(), LLMConnectionError(), "ok"])

        result = await complete_with_retry(operation, max_retries=3, sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=LLMRequestError(503))

        with pytest.raises(LLMRequestError):
            await complete_with_retry(operation, max_retries=3, sleep=sleep)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=LLMRequestError(401))

        with pytest.raises(LLMRequestError):
            await complete_with_retry(operation, sleep=sleep)
        assert operation.await_count == 1
        sleep.assert_not_awaited()


# ---------------------------------------------------------------------------
# Local backend (httpx)
# ---------------------------------------------------------------------------


class TestLocalLLMClient:
    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=chat_response('{"ok": true}'))

        client = LocalLLMClient(transport=httpx.MockTransport(handler))
        assert await client.complete(MESSAGES, OPTIONS) == '{"ok": true}'

        request = seen[0]
        assert str(request.url) == "http://localhost:1234/v1/chat/completions"
        assert "authorization" not in request.headers
        body = json.loads(request.content)
        assert body["messages"][0] == {"role": "system", "content": "You are a coach."}
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 1024
        assert "response_format" not in body
        assert "model" not in body

    @pytest.mark.asyncio
    async def test_model_sent_when_configured(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=chat_response("x"))

        client = LocalLLMClient(model="qwen2.5-7b", transport=httpx.MockTransport(handler))
        await client.complete(MESSAGES, OPTIONS)
        assert bodies[0]["model"] == "qwen2.5-7b"

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, text="unauthorized")

        client = LocalLLMClient(transport=httpx.MockTransport(handler))
        with pytest.raises(LLMRequestError) as exc_info:
            await client.complete(MESSAGES, OPTIONS)
        assert exc_info.value.status_code == 401
        assert calls == 1

    @pytest.mark.asyncio
    async def test_malformed_body(self) -> None:
        client = LocalLLMClient(
            max_retries=1,
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})),
        )
        with pytest.raises(InvalidResponseError):
            await client.complete(MESSAGES, OPTIONS)

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = LocalLLMClient(max_retries=1, transport=httpx.MockTransport(handler))
        with pytest.raises(LLMConnectionError):
            await client.complete(MESSAGES, OPTIONS)

    @pytest.mark.asyncio
    async def test_test_connection(self) -> None:
        ok = LocalLLMClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": []})))
        assert await ok.test_connection() is True

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        down = LocalLLMClient(transport=httpx.MockTransport(refuse))
        assert await down.test_connection() is False

    @pytest.mark.asyncio
    async def test_aclose_closes_connection_pool(self) -> None:
        client = LocalLLMClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        await client.aclose()
        assert client._client.is_closed


# ---------------------------------------------------------------------------
# Cloud backend (openai SDK)
# ---------------------------------------------------------------------------


def mock_openai(content: str | None = '{"ok": true}') -> MagicMock:
    client = MagicMock()
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    client.chat.completions.create = AsyncMock(return_value=completion)
    return client


class TestOpenAILLMClient:
    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        client = OpenAILLMClient(api_key="")
        with pytest.raises(APIKeyMissingError):
            await client.complete(MESSAGES, OPTIONS)
        assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_json_mode_requested(self) -> None:
        sdk = mock_openai()
        client = OpenAILLMClient(api_key="sk-test", model="gpt-4", client=sdk)

        assert await client.complete(MESSAGES, OPTIONS) == '{"ok": true}'

        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "Analyze this."}

    @pytest.mark.asyncio
    async def test_json_mode_off(self) -> None:
        sdk = mock_openai()
        client = OpenAILLMClient(api_key="sk-test", client=sdk)
        await client.complete(MESSAGES, CompletionOptions(json_mode=False))
        assert "response_format" not in sdk.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_empty_content(self) -> None:
        client = OpenAILLMClient(api_key="sk-test", max_retries=1, client=mock_openai(None))
        with pytest.raises(InvalidResponseError):
            await client.complete(MESSAGES, OPTIONS)

    @pytest.mark.asyncio
    async def test_status_error_mapped(self) -> None:
        sdk = mock_openai()
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(403, request=request)
        sdk.chat.completions.create.side_effect = openai.PermissionDeniedError(
            "forbidden", response=response, body=None
        )
        client = OpenAILLMClient(api_key="sk-test", client=sdk)

        with pytest.raises(LLMRequestError) as exc_info:
            await client.complete(MESSAGES, OPTIONS)
        assert exc_info.value.status_code == 403
        assert sdk.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_non_json_content_in_json_mode(self) -> None:
        sdk = mock_openai("Sure! Here is the analysis.")
        client = OpenAILLMClient(api_key="sk-test", client=sdk)

        with pytest.raises(InvalidJSONError):
            await client.complete(MESSAGES, OPTIONS)
        assert sdk.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_plain_text_allowed_without_json_mode(self) -> None:
        client = OpenAILLMClient(api_key="sk-test", client=mock_openai("plain text"))
        assert await client.complete(MESSAGES, CompletionOptions(json_mode=False)) == "plain text"

    @pytest.mark.asyncio
    async def test_aclose_closes_sdk_client(self) -> None:
        sdk = mock_openai()
        sdk.close = AsyncMock()
        await OpenAILLMClient(api_key="sk-test", client=sdk).aclose()
        sdk.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Anthropic backend
# ---------------------------------------------------------------------------


class TestAnthropicLLMClient:
    @pytest.mark.asyncio
    async def test_system_messages_hoisted(self) -> None:
        sdk = MagicMock()
        message = MagicMock()
        message.content = [TextBlock(type="text", text='{"ok": true}')]
        sdk.messages.create = AsyncMock(return_value=message)
        client = AnthropicLLMClient(api_key="key", client=sdk)

        assert await client.complete(MESSAGES, OPTIONS) == '{"ok": true}'

        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["system"] == "You are a coach."
        assert kwargs["messages"] == [{"role": "user", "content": "Analyze this."}]
        assert kwargs["max_tokens"] == 1024

    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        with pytest.raises(APIKeyMissingError):
            await AnthropicLLMClient(api_key="").complete(MESSAGES, OPTIONS)

    @pytest.mark.asyncio
    async def test_aclose_closes_sdk_client(self) -> None:
        sdk = MagicMock()
        sdk.close = AsyncMock()
        await AnthropicLLMClient(api_key="key", client=sdk).aclose()
        sdk.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Tracing decorator
# ---------------------------------------------------------------------------


class TestTracingLLMClient:
    @pytest.mark.asyncio
    async def test_pass_through_without_sink(self) -> None:
        inner = AsyncMock()
        inner.complete.return_value = "result"
        client = TracingLLMClient(inner)
        assert await client.complete(MESSAGES, OPTIONS) == "result"

    @pytest.mark.asyncio
    async def test_records_generation(self) -> None:
        inner = AsyncMock()
        inner.complete.return_value = "x" * 40
        sink = LoggingTraceSink()
        client = TracingLLMClient(inner, sink, model_name="gpt-4")

        await client.complete(MESSAGES, OPTIONS)

        assert sink.generation_count == 1
        record = sink.pending[0]
        assert record.model == "gpt-4"
        assert record.output_tokens == 10
        assert record.error is None

        await sink.flush()
        assert sink.pending == []

    @pytest.mark.asyncio
    async def test_records_error_and_reraises(self) -> None:
        inner = AsyncMock()
        inner.complete.side_effect = LLMTimeoutError(60)
        sink = LoggingTraceSink()
        client = TracingLLMClient(inner, sink)

        with pytest.raises(LLMTimeoutError):
            await client.complete(MESSAGES, OPTIONS)
        assert sink.error_count == 1

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_affect_result(self) -> None:
        inner = AsyncMock()
        inner.complete.return_value = "result"
        sink = MagicMock()
        sink.record_generation.side_effect = RuntimeError("sink down")
        client = TracingLLMClient(inner, sink)

        assert await client.complete(MESSAGES, OPTIONS) == "result"

    @pytest.mark.asyncio
    async def test_aclose_delegates_to_backend(self) -> None:
        inner = AsyncMock()
        await TracingLLMClient(inner).aclose()
        inner.aclose.assert_awaited_once()

    def test_estimate_tokens(self) -> None:
        assert estimate_tokens("abcdefgh") == 2


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    @pytest.mark.parametrize(
        ("mode", "backend"),
        [
            (LLMMode.LOCAL, LocalLLMClient),
            (LLMMode.CLOUD, OpenAILLMClient),
            (LLMMode.ANTHROPIC, AnthropicLLMClient),
        ],
    )
    def test_selects_backend(self, mode: LLMMode, backend: type) -> None:
        settings = Settings(_env_file=None, llm_mode=mode)  # type: ignore[call-arg]
        client = create_llm_client(settings)
        assert isinstance(client, TracingLLMClient)
        assert isinstance(client.inner, backend)
