from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Coroutine

from agent_runtime.errors import AlreadyExistsError, NotFoundError
from agent_runtime.threads.types import ToolSafetyClass


@dataclass(frozen=True)
class ToolSafety:
    """Capability flags fixed at registration time."""

    read_only: bool = False
    idempotent: bool = False

    @property
    def classification(self) -> ToolSafetyClass:
        return ToolSafetyClass.READ_ONLY if self.read_only else ToolSafetyClass.DESTRUCTIVE


@dataclass
class ToolContext:
    """Per-call context handed to tool handlers."""

    thread_id: str
    workspace: Path
    cancel: asyncio.Event = field(default_factory=asyncio.Event)


ToolHandler = Callable[..., Coroutine[Any, Any, str]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict
    handler: ToolHandler
    safety: ToolSafety = field(default_factory=ToolSafety)

    def to_openai_schema(self) -> dict:
        """Return the tool in OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Registry for agent tools. Each tool is a coroutine the model can call.

    One registry is built per runtime and injected into the executor, so
    concurrent sessions never share mutable module state.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: dict,
        handler: ToolHandler,
        safety: ToolSafety | None = None,
    ) -> ToolDefinition:
        if name in self._tools:
            raise AlreadyExistsError("Tool", name)
        tool = ToolDefinition(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
            safety=safety or ToolSafety(),
        )
        self._tools[name] = tool
        return tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if tool is None:
            raise NotFoundError("Tool", name)
        return tool

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def get_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self._tools.values()]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._tools
