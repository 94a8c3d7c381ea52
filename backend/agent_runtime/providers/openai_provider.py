"""OpenAI-compatible provider (OpenRouter by default).

Wraps the OpenAI SDK. Retries transient failures (429 rate limit, 5xx server
errors, timeouts, connection errors) with exponential backoff. Does NOT retry
mid-stream: only the initial stream creation is retried, a partial stream is
reported as a ProviderError and the agent discards it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from agent_runtime.constants import (
    LLM_MAX_RETRIES,
    LLM_RETRY_BASE_DELAY_SECONDS,
    LLM_RETRY_MAX_DELAY_SECONDS,
    LLM_RETRYABLE_STATUS_CODES,
)
from agent_runtime.errors import ProviderError
from agent_runtime.providers.base import (
    ProviderChunk,
    ProviderResponse,
    RetryNotice,
    TokenChunk,
    TokenUsage,
)
from agent_runtime.threads.types import EventType, ThreadEvent, ToolCall
from agent_runtime.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)


def _is_retryable(exc: Exception) -> bool:
    """Determine if an exception is transient and worth retrying."""
    if isinstance(exc, (APITimeoutError, APIConnectionError)):
        return True
    if isinstance(exc, APIStatusError) and exc.status_code in LLM_RETRYABLE_STATUS_CODES:
        return True
    return False


def _status_code(exc: Exception) -> int | None:
    return exc.status_code if isinstance(exc, APIStatusError) else None


def _to_provider_error(exc: Exception, attempts: int = 1) -> ProviderError:
    return ProviderError(
        f"{type(exc).__name__}: {exc}",
        retryable=_is_retryable(exc),
        status_code=_status_code(exc),
        attempts=attempts,
    )


def build_messages(history: list[ThreadEvent], system_prompt: str | None = None) -> list[dict]:
    """Convert thread events into Chat Completions messages.

    Consecutive TOOL_CALL events after an AGENT_MESSAGE are folded into that
    assistant message; a TOOL_CALL that follows a tool result opens a new
    assistant message.
    """
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for event in history:
        if event.type == EventType.USER_MESSAGE:
            messages.append({"role": "user", "content": event.data.text})
        elif event.type == EventType.AGENT_MESSAGE:
            messages.append({"role": "assistant", "content": event.data.text})
        elif event.type == EventType.SYSTEM_MESSAGE:
            messages.append({"role": "system", "content": event.data.text})
        elif event.type == EventType.TOOL_CALL:
            call: ToolCall = event.data
            tc = {
                "id": call.call_id,
                "type": "function",
                "function": {"name": call.tool_name, "arguments": json.dumps(call.input)},
            }
            last = messages[-1] if messages else None
            if last is not None and last["role"] == "assistant":
                last.setdefault("tool_calls", []).append(tc)
            else:
                messages.append({"role": "assistant", "content": None, "tool_calls": [tc]})
        elif event.type == EventType.TOOL_RESULT:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": event.data.call_id,
                    "content": event.data.output,
                }
            )
    return messages


def _accumulate_tool_call(accumulated: dict[int, dict], delta) -> None:
    """Merge streamed tool_call deltas into complete tool call objects."""
    tc = accumulated.setdefault(delta.index, {"id": "", "name": "", "arguments": ""})
    if delta.id:
        tc["id"] = delta.id
    if delta.function:
        if delta.function.name:
            tc["name"] += delta.function.name
        if delta.function.arguments:
            tc["arguments"] += delta.function.arguments


def _parse_tool_call(raw: dict) -> ToolCall:
    arguments = raw["arguments"]
    try:
        parsed = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError as exc:
        return ToolCall(
            call_id=raw["id"],
            tool_name=raw["name"],
            input={},
            parse_error=f"{exc}. Raw arguments: {arguments[:200]}",
        )
    if not isinstance(parsed, dict):
        return ToolCall(
            call_id=raw["id"],
            tool_name=raw["name"],
            input={},
            parse_error=f"expected a JSON object, got {type(parsed).__name__}",
        )
    return ToolCall(call_id=raw["id"], tool_name=raw["name"], input=parsed)


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        *,
        system_prompt: str | None = None,
        temperature: float = 0.2,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=httpx.Timeout(120.0, connect=10.0),
        )

    @classmethod
    def from_settings(cls, settings) -> OpenAIProvider:
        if not settings.OPENROUTER_API_KEY:
            raise ProviderError("OPENROUTER_API_KEY is not configured")
        return cls(
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
            model=settings.OPENROUTER_MODEL,
            system_prompt=settings.SYSTEM_PROMPT,
        )

    async def _create_stream(self, kwargs: dict) -> AsyncIterator:
        """Yield a RetryNotice per backoff, then the opened stream.

        Only the stream creation (initial HTTP handshake) is retried.
        """
        for attempt in range(1, LLM_MAX_RETRIES + 1):
            try:
                stream = await self.client.chat.completions.create(**kwargs)
            except APIError as exc:
                if attempt < LLM_MAX_RETRIES and _is_retryable(exc):
                    delay = min(
                        LLM_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)),
                        LLM_RETRY_MAX_DELAY_SECONDS,
                    )
                    logger.warning(
                        "LLM stream creation attempt %d/%d failed (%s), retrying in %.1fs",
                        attempt,
                        LLM_MAX_RETRIES,
                        exc,
                        delay,
                    )
                    yield RetryNotice(
                        attempt=attempt,
                        max_attempts=LLM_MAX_RETRIES,
                        delay=delay,
                        error=f"{type(exc).__name__}: {exc}",
                        status_code=_status_code(exc),
                    )
                    await asyncio.sleep(delay)
                else:
                    raise _to_provider_error(exc, attempts=attempt) from exc
            else:
                yield stream
                return

    async def send(
        self,
        history: list[ThreadEvent],
        tools: list[ToolDefinition],
        cancel: asyncio.Event,
    ) -> AsyncIterator[ProviderChunk]:
        kwargs: dict = {
            "model": self.model,
            "messages": build_messages(history, self.system_prompt),
            "stream": True,
            "stream_options": {"include_usage": True},
            "temperature": self.temperature,
        }
        if tools:
            kwargs["tools"] = [t.to_openai_schema() for t in tools]
            kwargs["tool_choice"] = "auto"

        stream = None
        async for opened in self._create_stream(kwargs):
            if isinstance(opened, RetryNotice):
                yield opened
                if cancel.is_set():
                    return
            else:
                stream = opened

        text_parts: list[str] = []
        tool_calls_acc: dict[int, dict] = {}
        usage: TokenUsage | None = None
        stop_reason: str | None = None

        try:
            async for chunk in stream:
                if cancel.is_set():
                    logger.debug("Provider stream cancelled")
                    return
                if chunk.usage:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    stop_reason = choice.finish_reason
                delta = choice.delta
                if delta is None:
                    continue
                if delta.content:
                    text_parts.append(delta.content)
                    yield TokenChunk(delta.content)
                if delta.tool_calls:
                    for tc_delta in delta.tool_calls:
                        _accumulate_tool_call(tool_calls_acc, tc_delta)
        except APIError as exc:
            raise _to_provider_error(exc) from exc
        finally:
            await stream.close()

        yield ProviderResponse(
            text="".join(text_parts),
            tool_calls=[_parse_tool_call(tool_calls_acc[i]) for i in sorted(tool_calls_acc)],
            usage=usage,
            stop_reason=stop_reason,
        )

    async def close(self) -> None:
        await self.client.close()
