"""Live agents keyed by thread id.

The HTTP and websocket surfaces never build agents themselves: they ask the
``SessionManager``, which binds one ``Agent`` (with its own queue, channel and
pending-approval parking lot) to each thread on first use.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from agent_runtime.agent.core import Agent
from agent_runtime.agent.events import NotificationChannel
from agent_runtime.constants import DEFAULT_COMPACTION_RETAIN, DEFAULT_MAX_TOOL_ROUNDS
from agent_runtime.errors import ProviderError
from agent_runtime.providers.base import Provider
from agent_runtime.threads.manager import ThreadManager
from agent_runtime.tools.approval import (
    ApprovalCallback,
    PendingApprovalCallback,
    TimeoutApprovalCallback,
)
from agent_runtime.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


@dataclass
class AgentSession:
    agent: Agent
    approvals: PendingApprovalCallback

    @property
    def channel(self) -> NotificationChannel:
        return self.agent.channel

    def to_dict(self) -> dict:
        stats = self.agent.queue_stats()
        return {
            "thread_id": self.agent.thread_id,
            "state": self.agent.state.value,
            "queue_length": stats.queue_length,
            "allowed_tools": sorted(self.agent.allowed_tools),
            "pending_approvals": [p.to_dict() for p in self.approvals.pending()],
        }


class SessionManager:
    def __init__(
        self,
        threads: ThreadManager,
        executor: ToolExecutor,
        provider: Provider | None = None,
        *,
        workspace: Path | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        compaction_retain: int = DEFAULT_COMPACTION_RETAIN,
        auto_compact_tokens: int | None = None,
        approval_timeout: float | None = None,
    ) -> None:
        self.threads = threads
        self.executor = executor
        self.provider = provider
        self.workspace = workspace
        self.max_tool_rounds = max_tool_rounds
        self.compaction_retain = compaction_retain
        self.auto_compact_tokens = auto_compact_tokens
        self.approval_timeout = approval_timeout
        self._sessions: dict[str, AgentSession] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        threads: ThreadManager,
        executor: ToolExecutor,
        provider: Provider | None,
        settings,
    ) -> SessionManager:
        return cls(
            threads,
            executor,
            provider,
            workspace=settings.WORKSPACE_DIR,
            max_tool_rounds=settings.MAX_TOOL_ROUNDS,
            compaction_retain=settings.COMPACTION_RETAIN,
            auto_compact_tokens=settings.AUTO_COMPACT_TOKENS,
            approval_timeout=settings.APPROVAL_TIMEOUT_SECONDS,
        )

    def get(self, thread_id: str) -> AgentSession | None:
        return self._sessions.get(thread_id)

    def sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    async def get_or_create(self, thread_id: str) -> AgentSession:
        """Return the thread's session, creating its agent on first use.

        Raises NotFoundError for an unknown thread and ProviderError when no
        model provider is configured.
        """
        async with self._lock:
            session = self._sessions.get(thread_id)
            if session is not None:
                return session

            await self.threads.get_thread(thread_id)
            if self.provider is None:
                raise ProviderError("No model provider is configured")

            pending = PendingApprovalCallback()
            approval: ApprovalCallback = pending
            if self.approval_timeout:
                approval = TimeoutApprovalCallback(pending, self.approval_timeout)

            agent = Agent(
                thread_id,
                self.threads,
                self.provider,
                self.executor,
                approval,
                workspace=self.workspace,
                max_tool_rounds=self.max_tool_rounds,
                compaction_retain=self.compaction_retain,
                auto_compact_tokens=self.auto_compact_tokens,
            )
            session = AgentSession(agent=agent, approvals=pending)
            self._sessions[thread_id] = session
            logger.info("Started agent session for thread %s", thread_id)
            return session

    async def discard(self, thread_id: str) -> None:
        session = self._sessions.pop(thread_id, None)
        if session is None:
            return
        session.agent.clear_queue(include_system=True)
        await session.agent.abort()
        logger.info("Closed agent session for thread %s", thread_id)

    async def close(self) -> None:
        for thread_id in list(self._sessions):
            await self.discard(thread_id)
        if self.provider is not None and hasattr(self.provider, "close"):
            await self.provider.close()
        await self.threads.store.close()
