"""Fakes shared by the test modules: a scripted provider, scripted approvals
and a couple of tools that record their invocations."""

from __future__ import annotations

import asyncio
from pathlib import Path

from agent_runtime.agent.core import Agent
from agent_runtime.errors import ToolExecutionError
from agent_runtime.providers.base import ProviderResponse, TokenChunk
from agent_runtime.threads.manager import ThreadManager
from agent_runtime.threads.store import InMemoryThreadStore
from agent_runtime.threads.types import ApprovalDecision, ToolCall
from agent_runtime.tools.approval import ApprovalPolicy, StaticApprovalCallback
from agent_runtime.tools.executor import ToolExecutor
from agent_runtime.tools.registry import ToolRegistry, ToolSafety


def reply(text: str = "", *calls: ToolCall) -> ProviderResponse:
    return ProviderResponse(text=text, tool_calls=list(calls))


def call(call_id: str, tool_name: str, **arguments) -> ToolCall:
    return ToolCall(call_id=call_id, tool_name=tool_name, input=arguments)


class ScriptedProvider:
    """Plays back one script entry per ``send``.

    An entry is a ``ProviderResponse`` (its text is streamed word by word
    first), an exception to raise, or an async generator function taking
    ``cancel`` for custom behavior.
    """

    name = "scripted"

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.histories: list[list] = []
        self.tool_names: list[list[str]] = []

    async def send(self, history, tools, cancel):
        self.histories.append(list(history))
        self.tool_names.append([t.name for t in tools])
        if not self.script:
            raise AssertionError("provider called more often than scripted")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            async for chunk in step(cancel):
                yield chunk
            return
        for word in step.text.split(" ") if step.text else []:
            yield TokenChunk(word + " ")
        yield step

    @property
    def calls(self) -> int:
        return len(self.histories)


def blocking_stream(started: asyncio.Event, partial: str = "partial answer"):
    """A stream that emits ``partial`` and then hangs until cancelled."""

    async def stream(cancel):
        yield TokenChunk(partial)
        started.set()
        await asyncio.Event().wait()

    return stream


class ScriptedApproval:
    def __init__(self, *decisions: ApprovalDecision) -> None:
        self.decisions = list(decisions)
        self.requests: list[tuple[str, dict]] = []

    async def request(self, tool_name: str, input: dict) -> ApprovalDecision:
        self.requests.append((tool_name, input))
        return self.decisions.pop(0)


class RecordingTools:
    """``echo`` is read-only; ``bash`` and ``explode`` are destructive."""

    def __init__(self) -> None:
        self.invocations: list[tuple[str, dict]] = []

    async def echo(self, context, text: str) -> str:
        self.invocations.append(("echo", {"text": text}))
        return f"echo: {text}"

    async def bash(self, context, command: str) -> str:
        self.invocations.append(("bash", {"command": command}))
        return f"ran {command}"

    async def explode(self, context) -> str:
        self.invocations.append(("explode", {}))
        raise ToolExecutionError("boom")

    def registry(self) -> ToolRegistry:
        registry = ToolRegistry()
        registry.register(
            "echo",
            "Echo the text back.",
            {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
            self.echo,
            ToolSafety(read_only=True, idempotent=True),
        )
        registry.register(
            "bash",
            "Run a command.",
            {
                "type": "object",
                "properties": {"command": {"type": "string"}},
                "required": ["command"],
            },
            self.bash,
        )
        registry.register(
            "explode",
            "Always fails.",
            {"type": "object", "properties": {}},
            self.explode,
        )
        return registry

    def ran(self, name: str) -> int:
        return sum(1 for tool, _ in self.invocations if tool == name)


async def make_agent(
    script: list,
    *,
    approval=None,
    policy: ApprovalPolicy | None = None,
    tools: RecordingTools | None = None,
    workspace: Path | None = None,
    **kwargs,
) -> tuple[Agent, ScriptedProvider, RecordingTools]:
    tools = tools or RecordingTools()
    threads = ThreadManager(InMemoryThreadStore())
    thread = await threads.create_thread("t1")
    provider = ScriptedProvider(script)
    agent = Agent(
        thread.id,
        threads,
        provider,
        ToolExecutor(tools.registry(), policy),
        approval or StaticApprovalCallback(ApprovalDecision.ALLOW_ONCE),
        workspace=workspace,
        **kwargs,
    )
    return agent, provider, tools


async def event_types(agent: Agent) -> list[str]:
    return [e.type.value for e in await agent.threads.get_events(agent.thread_id)]
