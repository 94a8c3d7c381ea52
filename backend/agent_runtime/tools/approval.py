"""Approval contracts and policies for the tool gate.

The ``ApprovalCallback`` is the human-in-the-loop seam: the agent awaits it
with no timeout of its own. UIs that want one wrap their callback in
``TimeoutApprovalCallback``; the web surface parks requests in a
``PendingApprovalCallback`` until an operator answers over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from agent_runtime.errors import NotFoundError
from agent_runtime.threads.types import ApprovalDecision, utcnow
from agent_runtime.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)


class ApprovalCallback(Protocol):
    async def request(self, tool_name: str, input: dict) -> ApprovalDecision: ...


@dataclass(frozen=True)
class ApprovalPolicy:
    """Global policy consulted before the approval callback.

    ``disabled_tools`` wins over everything else, including the session
    allow-set.
    """

    auto_approve_read_only: bool = True
    auto_approve_tools: frozenset[str] = frozenset()
    disabled_tools: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, settings) -> ApprovalPolicy:
        return cls(
            auto_approve_read_only=settings.AUTO_APPROVE_READ_ONLY,
            auto_approve_tools=frozenset(settings.AUTO_APPROVE_TOOLS),
            disabled_tools=frozenset(settings.DISABLED_TOOLS),
        )

    def is_disabled(self, tool_name: str) -> bool:
        return tool_name in self.disabled_tools

    def auto_approves(self, tool: ToolDefinition) -> bool:
        if tool.name in self.auto_approve_tools:
            return True
        return self.auto_approve_read_only and tool.safety.read_only


class StaticApprovalCallback:
    """Answers every request with the same decision (CLI flags, scripted runs)."""

    def __init__(self, decision: ApprovalDecision) -> None:
        self.decision = decision

    async def request(self, tool_name: str, input: dict) -> ApprovalDecision:
        return self.decision


class TimeoutApprovalCallback:
    """Auto-deny when the wrapped callback does not answer within ``seconds``."""

    def __init__(self, inner: ApprovalCallback, seconds: float) -> None:
        self.inner = inner
        self.seconds = seconds

    async def request(self, tool_name: str, input: dict) -> ApprovalDecision:
        try:
            return await asyncio.wait_for(
                self.inner.request(tool_name, input), timeout=self.seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Approval for %s timed out after %.1fs, denying", tool_name, self.seconds
            )
            return ApprovalDecision.DENY


@dataclass
class PendingApproval:
    tool_name: str
    input: dict
    id: str = field(default_factory=lambda: f"apr_{uuid.uuid4().hex[:12]}")
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    future: asyncio.Future | None = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "input": self.input,
            "created_at": self.created_at,
        }


class PendingApprovalCallback:
    """Parks each request on a future until ``resolve`` is called.

    The agent never asks twice at the same time, so at most one entry is
    pending per callback; the mapping is kept for lookups by id.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingApproval] = {}

    async def request(self, tool_name: str, input: dict) -> ApprovalDecision:
        loop = asyncio.get_running_loop()
        pending = PendingApproval(tool_name=tool_name, input=input, future=loop.create_future())
        self._pending[pending.id] = pending
        logger.info("Waiting for approval %s (%s)", pending.id, tool_name)
        try:
            return await pending.future
        finally:
            self._pending.pop(pending.id, None)

    def pending(self) -> list[PendingApproval]:
        return list(self._pending.values())

    def resolve(self, approval_id: str, decision: ApprovalDecision) -> None:
        pending = self._pending.get(approval_id)
        if pending is None or pending.future is None or pending.future.done():
            raise NotFoundError("Approval", approval_id)
        pending.future.set_result(decision)
