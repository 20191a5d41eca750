"""Optional observability for LLM calls.

:class:`TracingLLMClient` wraps any :class:`LLMClient` and reports each
generation to a :class:`TraceSink`. The sink is injected per session; with no
sink the wrapper is a pass-through. Sink failures are logged and never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from src.llm.base import ChatMessage, CompletionOptions, LLMClient

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return len(text) // 4


@dataclass
class GenerationRecord:
    name: str
    model: str
    input_messages: list[dict[str, str]]
    output: str | None = None
    error: str | None = None
    latency_ms: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)


class TraceSink(Protocol):
    """Destination for trace records (a hosted tracing product in production)."""

    def record_generation(self, record: GenerationRecord) -> None: ...

    def record_event(self, name: str, payload: dict[str, Any]) -> None: ...

    async def flush(self) -> None: ...


class LoggingTraceSink:
    """Sink that logs records and keeps them pending until :meth:`flush`."""

    def __init__(self) -> None:
        self.pending: list[GenerationRecord | tuple[str, dict[str, Any]]] = []
        self.generation_count = 0
        self.error_count = 0
        self.event_count = 0

    def record_generation(self, record: GenerationRecord) -> None:
        self.generation_count += 1
        if record.error:
            self.error_count += 1
        self.pending.append(record)
        logger.info(
            "LLM generation %s model=%s latency=%.0fms tokens=%d/%d%s",
            record.name,
            record.model,
            record.latency_ms,
            record.input_tokens,
            record.output_tokens,
            f" error={record.error}" if record.error else "",
        )

    def record_event(self, name: str, payload: dict[str, Any]) -> None:
        self.event_count += 1
        self.pending.append((name, payload))
        logger.debug("Trace event %s: %s", name, payload)

    async def flush(self) -> None:
        if self.pending:
            logger.info("Flushing %d trace records", len(self.pending))
        self.pending.clear()
        await asyncio.sleep(0)


def safe_record_event(sink: TraceSink | None, name: str, payload: dict[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink.record_event(name, payload)
    except Exception:
        logger.exception("Trace sink failed to record event %s", name)


async def safe_flush(sink: TraceSink | None) -> None:
    if sink is None:
        return
    try:
        await sink.flush()
    except Exception:
        logger.exception("Trace sink flush failed")


class TracingLLMClient:
    """Decorator adding generation tracing to another :class:`LLMClient`."""

    def __init__(
        self,
        inner: LLMClient,
        sink: TraceSink | None = None,
        model_name: str = "unknown",
        generation_name: str = "coaching-analysis",
    ) -> None:
        self.inner = inner
        self.sink = sink
        self.model_name = model_name
        self.generation_name = generation_name

    async def complete(self, messages: list[ChatMessage], options: CompletionOptions) -> str:
        if self.sink is None:
            return await self.inner.complete(messages, options)

        started = time.perf_counter()
        record = GenerationRecord(
            name=self.generation_name,
            model=self.model_name,
            input_messages=[m.to_dict() for m in messages],
            input_tokens=sum(estimate_tokens(m.content) for m in messages),
            metadata={"temperature": options.temperature, "max_tokens": options.max_tokens},
        )
        try:
            output = await self.inner.complete(messages, options)
        except Exception as exc:
            record.error = str(exc)
            record.latency_ms = (time.perf_counter() - started) * 1000
            self._emit(record)
            raise

        record.output = output
        record.output_tokens = estimate_tokens(output)
        record.latency_ms = (time.perf_counter() - started) * 1000
        self._emit(record)
        return output

    def _emit(self, record: GenerationRecord) -> None:
        if self.sink is None:
            return
        try:
            self.sink.record_generation(record)
        except Exception:
            logger.exception("Trace sink failed to record generation")

    async def test_connection(self) -> bool:
        return await self.inner.test_connection()

    async def aclose(self) -> None:
        await self.inner.aclose()
