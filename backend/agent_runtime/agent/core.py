"""Agent: one conversation's turn loop.

An agent owns a single thread. It accepts a message only when idle; anything
that arrives mid-turn goes to its ``MessageQueue`` and is drained one message
per return to idle. A turn runs as an asyncio task:

    user message -> provider -> (tool calls -> approval -> results)* -> idle

Every durable fact goes to the thread through ``ThreadManager``; streaming
tokens and state changes only go out on the ``NotificationChannel``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path

from agent_runtime.agent.events import AgentNotification, NotificationChannel, NotificationType
from agent_runtime.agent.queue import (
    MessageKind,
    MessagePriority,
    MessageQueue,
    QueuedMessage,
    QueueStats,
    is_user_authored,
)
from agent_runtime.agent.state import AgentState, SendResult, TurnMetrics
from agent_runtime.constants import (
    COMPACT_COMMAND,
    DEFAULT_COMPACTION_RETAIN,
    DEFAULT_MAX_TOOL_ROUNDS,
    TOOL_RESULT_EVENT_MAX_CHARS,
)
from agent_runtime.errors import CancellationError, ProviderError
from agent_runtime.providers.base import Provider, ProviderResponse, RetryNotice, TokenChunk
from agent_runtime.threads.manager import (
    CompactionResult,
    ThreadManager,
    estimate_events_tokens,
    estimate_tokens,
)
from agent_runtime.threads.types import (
    ApprovalDecision,
    ApprovalDecisionPayload,
    ApprovalRequestPayload,
    EventPayload,
    EventType,
    TextPayload,
    ThreadEvent,
    ToolCall,
    ToolResult,
    ToolResultStatus,
    ToolSafetyClass,
)
from agent_runtime.tools.approval import ApprovalCallback
from agent_runtime.tools.executor import ToolExecutor
from agent_runtime.tools.registry import ToolContext

logger = logging.getLogger(__name__)

ABORTED_TOOL_MESSAGE = "aborted: the turn was cancelled before the tool finished"


class Agent:
    """Drives turns for one thread. Not thread-safe; use from one event loop."""

    def __init__(
        self,
        thread_id: str,
        threads: ThreadManager,
        provider: Provider,
        executor: ToolExecutor,
        approval: ApprovalCallback,
        *,
        workspace: Path | None = None,
        queue: MessageQueue | None = None,
        channel: NotificationChannel | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        compaction_retain: int = DEFAULT_COMPACTION_RETAIN,
        auto_compact_tokens: int | None = None,
    ) -> None:
        self.thread_id = thread_id
        self.threads = threads
        self.provider = provider
        self.executor = executor
        self.approval = approval
        self.workspace = workspace or Path.cwd()
        self.queue = queue if queue is not None else MessageQueue()
        self.channel = channel if channel is not None else NotificationChannel()
        self.max_tool_rounds = max_tool_rounds
        self.compaction_retain = compaction_retain
        self.auto_compact_tokens = auto_compact_tokens

        self._state = AgentState.IDLE
        self._session_allowed: set[str] = set()
        self._turn_task: asyncio.Task | None = None
        self._cancel: asyncio.Event | None = None
        self._abort_requested = False
        # TOOL_CALL already in the thread whose TOOL_RESULT is not yet.
        self._open_call: ToolCall | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state == AgentState.IDLE

    @property
    def allowed_tools(self) -> frozenset[str]:
        """Tools approved with ALLOW_SESSION for the lifetime of this agent."""
        return frozenset(self._session_allowed)

    async def send_message(
        self,
        content: str,
        *,
        kind: MessageKind | str = MessageKind.USER,
        priority: MessagePriority | str = MessagePriority.NORMAL,
    ) -> SendResult:
        """Run a turn for ``content`` and wait for it, or queue it if busy."""
        outcome = self.post_message(content, kind=kind, priority=priority)
        if isinstance(outcome, SendResult):
            return outcome
        try:
            return await outcome
        except asyncio.CancelledError:
            # Aborted before the turn got to run.
            if outcome.cancelled() and not asyncio.current_task().cancelling():
                return SendResult("aborted")
            raise

    def post_message(
        self,
        content: str,
        *,
        kind: MessageKind | str = MessageKind.USER,
        priority: MessagePriority | str = MessagePriority.NORMAL,
    ) -> asyncio.Task | SendResult:
        """Start a turn without waiting for it.

        Returns the turn task when the agent was idle, otherwise a
        ``SendResult`` with status ``queued``.
        """
        kind = MessageKind(kind)
        priority = MessagePriority(priority)
        if not content.strip():
            raise ValueError("Cannot send an empty message")
        if not self.is_idle:
            message = self.queue_message(content, kind=kind, priority=priority)
            return SendResult("queued", message_id=message.id)
        return self._start_turn(content, kind)

    def queue_message(
        self,
        content: str,
        *,
        kind: MessageKind | str = MessageKind.USER,
        priority: MessagePriority | str = MessagePriority.NORMAL,
    ) -> QueuedMessage:
        if not content.strip():
            raise ValueError("Cannot queue an empty message")
        message = self.queue.enqueue(
            QueuedMessage(
                content=content, kind=MessageKind(kind), priority=MessagePriority(priority)
            )
        )
        logger.info(
            "Thread %s: queued %s message %s (%s priority, %d waiting)",
            self.thread_id,
            message.kind.value,
            message.id,
            message.priority.value,
            len(self.queue),
        )
        self._notify(
            NotificationType.MESSAGE_QUEUED,
            {"id": message.id, "queue_length": len(self.queue), **message.to_dict()},
        )
        return message

    def process_queued(self) -> bool:
        """Start the next queued message if the agent is idle."""
        if not self.is_idle or self._turn_task is not None:
            return False
        return self._drain_one()

    def queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def clear_queue(self, *, include_system: bool = False) -> int:
        removed = self.queue.clear(None if include_system else is_user_authored)
        if removed:
            logger.info("Thread %s: cleared %d queued message(s)", self.thread_id, removed)
        return removed

    async def abort(self) -> bool:
        """Cancel the turn in flight.

        Returns False when there was nothing to abort. Partial streamed text
        is discarded; a tool call without a result gets an aborted result so
        the thread stays well-formed.
        """
        task = self._turn_task
        if task is None or task.done() or self._abort_requested:
            return False

        logger.info("Thread %s: aborting turn (state=%s)", self.thread_id, self._state.value)
        self._abort_requested = True
        if self._cancel is not None:
            self._cancel.set()
        task.cancel()
        if task is not asyncio.current_task():
            await asyncio.wait({task})
        return True

    async def reset(self) -> None:
        """Abort, clear the thread and forget session approvals.

        Queued user messages are dropped; queued system messages still run
        before the thread is cleared.
        """
        self.clear_queue()
        await self.abort()
        await self.wait_until_idle()
        await self.threads.clear_thread(self.thread_id)
        self._session_allowed.clear()

    async def wait_until_idle(self) -> None:
        """Wait for the current turn and any turns drained from the queue."""
        while self._turn_task is not None:
            await asyncio.wait({self._turn_task})

    async def compact(self, retain: int | None = None) -> CompactionResult:
        result = await self.threads.compact(
            self.thread_id, self.compaction_retain if retain is None else retain
        )
        self._notify(
            NotificationType.COMPACTION_COMPLETE,
            {"compacted": result.compacted_count, "tokens_saved": result.tokens_saved},
        )
        return result

    # ------------------------------------------------------------------
    # ApprovalRecorder
    # ------------------------------------------------------------------

    async def approval_requested(self, call: ToolCall, read_only: bool) -> None:
        await self._append(
            EventType.APPROVAL_REQUEST,
            ApprovalRequestPayload(
                call_id=call.call_id,
                tool_name=call.tool_name,
                input=call.input,
                read_only=read_only,
            ),
        )
        self._set_state(AgentState.AWAITING_APPROVAL)
        self._notify(
            NotificationType.APPROVAL_REQUEST,
            {
                "call_id": call.call_id,
                "tool": call.tool_name,
                "input": call.input,
                "read_only": read_only,
            },
        )

    async def approval_decided(
        self, call: ToolCall, decision: ApprovalDecision, source: str
    ) -> None:
        await self._append(
            EventType.APPROVAL_DECISION,
            ApprovalDecisionPayload(
                call_id=call.call_id,
                tool_name=call.tool_name,
                decision=decision,
                source=source,
            ),
        )
        self._set_state(AgentState.TOOL_EXECUTION)
        self._notify(
            NotificationType.APPROVAL_DECISION,
            {"call_id": call.call_id, "tool": call.tool_name, "decision": decision.value},
        )

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    def _start_turn(
        self, content: str, kind: MessageKind, message_id: str | None = None
    ) -> asyncio.Task:
        # Leave IDLE before the task is scheduled: anything sent in the same
        # tick must queue.
        self._set_state(AgentState.THINKING)
        self._abort_requested = False
        self._cancel = asyncio.Event()
        task = asyncio.create_task(
            self._run_turn(content, kind, message_id),
            name=f"agent-turn-{self.thread_id}",
        )
        self._turn_task = task
        task.add_done_callback(self._on_turn_done)
        return task

    def _drain_one(self) -> bool:
        message = self.queue.dequeue_next()
        if message is None:
            return False
        logger.info(
            "Thread %s: processing queued message %s (%d left)",
            self.thread_id,
            message.id,
            len(self.queue),
        )
        task = self._start_turn(message.content, message.kind, message.id)
        task.add_done_callback(self._log_unobserved_failure)
        return True

    def _log_unobserved_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Thread %s: queued turn failed", self.thread_id, exc_info=exc
            )

    def _on_turn_done(self, task: asyncio.Task) -> None:
        if self._turn_task is not task:
            return
        # Cancelled before its first step, so _run_turn never cleaned up.
        self._turn_task = None
        self._cancel = None
        self._notify(NotificationType.TURN_ABORTED, {"status": "aborted"})
        self._enter_idle()

    def _enter_idle(self) -> None:
        self._set_state(AgentState.IDLE)
        self._drain_one()

    async def _run_turn(
        self, content: str, kind: MessageKind, message_id: str | None
    ) -> SendResult:
        metrics = TurnMetrics()
        self._notify(NotificationType.TURN_START, {"metrics": metrics.to_dict()})
        status = "completed"
        error: str | None = None

        try:
            if kind == MessageKind.USER and content.strip().startswith(COMPACT_COMMAND):
                await self._run_compact_command(content)
            else:
                await self._record_input(content, kind)
                error = await self._run_rounds(metrics)
                if error is not None:
                    status = "error"
        except (asyncio.CancelledError, CancellationError):
            if not self._abort_requested:
                status = "cancelled"
                raise
            task = asyncio.current_task()
            if task.cancelling():
                task.uncancel()
            status = "aborted"
            await self._close_open_call()
        except Exception as exc:
            status = "error"
            await self._close_open_call(
                f"Error: the turn failed before the tool finished: {type(exc).__name__}",
                ToolResultStatus.FAILED,
            )
            raise
        finally:
            self._open_call = None
            self._cancel = None
            if self._turn_task is asyncio.current_task():
                self._turn_task = None
            finished = (
                NotificationType.TURN_ABORTED
                if status in ("aborted", "cancelled")
                else NotificationType.TURN_COMPLETE
            )
            self._notify(finished, {"metrics": metrics.to_dict(), "status": status})
            logger.info(
                "Thread %s: turn %s %s in %.2fs (%d provider call(s), %d tool call(s))",
                self.thread_id,
                metrics.turn_id,
                status,
                metrics.elapsed,
                metrics.provider_calls,
                metrics.tool_calls,
            )
            self._enter_idle()

        return SendResult(status, message_id=message_id, error=error, metrics=metrics)

    async def _record_input(self, content: str, kind: MessageKind) -> None:
        if kind == MessageKind.USER:
            await self._append(EventType.USER_MESSAGE, TextPayload(content))
        else:
            await self._append(EventType.SYSTEM_MESSAGE, TextPayload(content))

    async def _run_compact_command(self, content: str) -> None:
        argument = content.strip()[len(COMPACT_COMMAND):].strip()
        retain = self.compaction_retain
        if argument:
            try:
                retain = int(argument)
            except ValueError:
                retain = -1
            if retain < 0:
                await self._append(
                    EventType.SYSTEM_MESSAGE,
                    TextPayload(f"Usage: {COMPACT_COMMAND} [retain]", local=True),
                )
                return
        result = await self.compact(retain)
        if result.compacted_count == 0:
            await self._append(
                EventType.SYSTEM_MESSAGE,
                TextPayload("Nothing to compact.", local=True),
            )

    async def _maybe_auto_compact(self) -> None:
        if not self.auto_compact_tokens:
            return
        if await self.threads.needs_compaction(self.thread_id, self.auto_compact_tokens):
            logger.info(
                "Thread %s exceeds %d tokens, compacting",
                self.thread_id,
                self.auto_compact_tokens,
            )
            await self.compact()

    async def _run_rounds(self, metrics: TurnMetrics) -> str | None:
        """Provider/tool loop. Returns an error message, or None on success."""
        for _round in range(self.max_tool_rounds):
            await self._maybe_auto_compact()
            self._set_state(AgentState.THINKING)

            try:
                response = await self._request_response(metrics)
            except ProviderError as exc:
                logger.warning("Thread %s: provider failed: %s", self.thread_id, exc)
                self._notify(NotificationType.ERROR, {"message": str(exc), "phase": "provider"})
                return str(exc)

            if response.text:
                event = await self._append(EventType.AGENT_MESSAGE, TextPayload(response.text))
                self._notify(
                    NotificationType.AGENT_MESSAGE,
                    {"event_id": event.id, "text": response.text},
                )

            if not response.tool_calls:
                return None

            self._set_state(AgentState.TOOL_EXECUTION)
            for call in response.tool_calls:
                await self._execute_tool_call(call, metrics)

        notice = (
            f"Stopped after {self.max_tool_rounds} tool rounds without a final answer."
        )
        logger.warning("Thread %s: %s", self.thread_id, notice)
        await self._append(EventType.SYSTEM_MESSAGE, TextPayload(notice, local=True))
        self._notify(NotificationType.ERROR, {"message": notice, "phase": "tool_rounds"})
        return notice

    async def _request_response(self, metrics: TurnMetrics) -> ProviderResponse:
        history = await self.threads.build_conversation(self.thread_id)
        metrics.provider_calls += 1
        metrics.tokens_in += estimate_events_tokens(history)

        text_parts: list[str] = []
        response: ProviderResponse | None = None
        try:
            async for chunk in self.provider.send(
                history, self.executor.tool_definitions(), self._cancel
            ):
                if isinstance(chunk, TokenChunk):
                    if self._state != AgentState.STREAMING:
                        self._set_state(AgentState.STREAMING)
                    text_parts.append(chunk.text)
                    self._notify(NotificationType.AGENT_TOKEN, {"token": chunk.text})
                elif isinstance(chunk, RetryNotice):
                    metrics.retry_attempts += 1
                    metrics.retry_delay += chunk.delay
                    metrics.last_retry_error = chunk.error
                    self._notify(NotificationType.RETRY_ATTEMPT, chunk.to_dict())
                elif isinstance(chunk, ProviderResponse):
                    response = chunk
        except ProviderError as exc:
            if exc.retryable and exc.attempts > 1:
                metrics.retry_successful = False
                metrics.last_retry_error = str(exc)
                self._notify(
                    NotificationType.RETRY_EXHAUSTED,
                    {"attempts": exc.attempts, "error": str(exc)},
                )
            raise
        except Exception as exc:
            logger.exception("Provider %s raised", getattr(self.provider, "name", "?"))
            raise ProviderError(f"{type(exc).__name__}: {exc}") from exc

        if response is None:
            if self._cancel is not None and self._cancel.is_set():
                raise CancellationError("provider stream cancelled")
            raise ProviderError("Provider stream ended without a final response")

        text = response.text or "".join(text_parts)
        if response.usage is not None:
            metrics.tokens_out += response.usage.completion_tokens
        else:
            metrics.tokens_out += estimate_tokens(text)
        return dataclasses.replace(response, text=text)

    async def _execute_tool_call(self, call: ToolCall, metrics: TurnMetrics) -> None:
        self._set_state(AgentState.TOOL_EXECUTION)
        await self._append(EventType.TOOL_CALL, call)
        self._open_call = call
        self._notify(
            NotificationType.TOOL_CALL_START,
            {"call_id": call.call_id, "tool": call.tool_name, "input": call.input},
        )

        context = ToolContext(
            thread_id=self.thread_id, workspace=self.workspace, cancel=self._cancel
        )
        result = await self.executor.execute(
            call,
            context,
            approval=self.approval,
            session_allowed=self._session_allowed,
            recorder=self,
        )
        await self._append(EventType.TOOL_RESULT, result)
        self._open_call = None
        metrics.tool_calls += 1

        preview = result.to_dict()
        preview["output"] = result.output[:TOOL_RESULT_EVENT_MAX_CHARS]
        self._notify(
            NotificationType.TOOL_CALL_COMPLETE,
            {"call_id": call.call_id, "tool": call.tool_name, "result": preview},
        )

    async def _close_open_call(
        self,
        output: str = ABORTED_TOOL_MESSAGE,
        status: ToolResultStatus = ToolResultStatus.ABORTED,
    ) -> None:
        call = self._open_call
        if call is None:
            return
        self._open_call = None
        for event in reversed(await self.threads.get_events(self.thread_id)):
            if event.type == EventType.TOOL_RESULT and event.data.call_id == call.call_id:
                return
        tool = self.executor.registry.get(call.tool_name)
        result = ToolResult.error(
            call,
            output,
            safety=tool.safety.classification if tool else ToolSafetyClass.DESTRUCTIVE,
            status=status,
        )
        await self._append(EventType.TOOL_RESULT, result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _append(self, event_type: EventType, data: EventPayload) -> ThreadEvent:
        event = await self.threads.add_event(self.thread_id, event_type, data)
        self._notify(NotificationType.THREAD_EVENT_ADDED, {"event": event.to_dict()})
        return event

    def _set_state(self, state: AgentState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.debug("Thread %s: %s -> %s", self.thread_id, previous.value, state.value)
        self._notify(
            NotificationType.STATE_CHANGE, {"from": previous.value, "to": state.value}
        )

    def _notify(self, notification_type: NotificationType, data: dict) -> None:
        self.channel.publish(AgentNotification(notification_type, self.thread_id, data))
