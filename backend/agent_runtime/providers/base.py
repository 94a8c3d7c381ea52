"""Provider contract.

A provider turns the conversation so far into one model response. ``send``
is an async generator: it yields zero or more ``TokenChunk`` items while the
model streams, then exactly one ``ProviderResponse``. A ``RetryNotice`` is
yielded before each backoff sleep. Failures are raised as ``ProviderError``. The ``cancel`` event is set by ``Agent.abort()``; a
provider that notices it should stop streaming and return without a
response.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol, Union

from agent_runtime.threads.types import ThreadEvent, ToolCall
from agent_runtime.tools.registry import ToolDefinition


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class TokenChunk:
    text: str


@dataclass(frozen=True)
class RetryNotice:
    """A transient failure; the provider sleeps ``delay`` seconds and tries again."""

    attempt: int
    max_attempts: int
    delay: float
    error: str
    status_code: int | None = None

    def to_dict(self) -> dict:
        return {
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "delay": self.delay,
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass(frozen=True)
class ProviderResponse:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage | None = None
    stop_reason: str | None = None


ProviderChunk = Union[TokenChunk, RetryNotice, ProviderResponse]


class Provider(Protocol):
    name: str

    def send(
        self,
        history: list[ThreadEvent],
        tools: list[ToolDefinition],
        cancel: asyncio.Event,
    ) -> AsyncIterator[ProviderChunk]: ...
