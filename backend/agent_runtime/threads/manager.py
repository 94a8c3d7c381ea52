from __future__ import annotations

import asyncio
import logging
import math
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from agent_runtime.constants import COMPACTED_PLACEHOLDER, ESTIMATED_CHARS_PER_TOKEN
from agent_runtime.errors import NotFoundError
from agent_runtime.threads.store import ThreadStore
from agent_runtime.threads.types import (
    EventPayload,
    EventType,
    TextPayload,
    Thread,
    ThreadEvent,
    ToolResult,
    check_payload,
)

logger = logging.getLogger(__name__)

# Events the provider is allowed to see when the conversation is rebuilt.
PROVIDER_EVENT_TYPES = frozenset(
    {
        EventType.USER_MESSAGE,
        EventType.AGENT_MESSAGE,
        EventType.TOOL_CALL,
        EventType.TOOL_RESULT,
        EventType.SYSTEM_MESSAGE,
    }
)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: chars / 4, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / ESTIMATED_CHARS_PER_TOKEN)


def estimate_events_tokens(events: list[ThreadEvent]) -> int:
    total = 0
    for event in events:
        if isinstance(event.data, TextPayload):
            total += estimate_tokens(event.data.text)
        elif isinstance(event.data, ToolResult):
            total += estimate_tokens(event.data.output)
        else:
            total += estimate_tokens(str(event.data.to_dict()))
    return total


def generate_thread_id() -> str:
    date = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"thread_{date}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class CompactionResult:
    compacted_count: int
    bytes_saved: int
    tokens_saved: int
    event: ThreadEvent | None  # the summary SYSTEM_MESSAGE, None when nothing changed


class ThreadManager:
    """Ordered, append-only event log for conversations.

    All persistence goes through the injected ``ThreadStore``; the manager
    adds payload validation, conversation rebuilding and compaction on top.
    """

    def __init__(self, store: ThreadStore) -> None:
        self.store = store
        self._compaction_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_thread(self, thread_id: str | None = None) -> Thread:
        thread = await self.store.create_thread(thread_id or generate_thread_id())
        logger.info("Created thread %s", thread.id)
        return thread

    async def get_thread(self, thread_id: str) -> Thread:
        thread = await self.store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError("Thread", thread_id)
        return thread

    async def thread_exists(self, thread_id: str) -> bool:
        return await self.store.get_thread(thread_id) is not None

    async def list_threads(self) -> list[str]:
        return await self.store.list_threads()

    async def add_event(
        self, thread_id: str, event_type: EventType, data: EventPayload
    ) -> ThreadEvent:
        check_payload(event_type, data)
        return await self.store.append_event(thread_id, event_type, data)

    async def get_events(self, thread_id: str) -> list[ThreadEvent]:
        return await self.store.get_events(thread_id)

    async def clear_thread(self, thread_id: str) -> None:
        await self.store.clear_events(thread_id)
        logger.info("Cleared thread %s", thread_id)

    async def build_conversation(self, thread_id: str) -> list[ThreadEvent]:
        """Events the provider should see, in order."""
        conversation = []
        for event in await self.get_events(thread_id):
            if event.type not in PROVIDER_EVENT_TYPES:
                continue
            if event.type == EventType.SYSTEM_MESSAGE and event.data.local:
                continue
            conversation.append(event)
        return conversation

    async def estimate_thread_tokens(self, thread_id: str) -> int:
        return estimate_events_tokens(await self.build_conversation(thread_id))

    async def needs_compaction(self, thread_id: str, max_tokens: int) -> bool:
        return await self.estimate_thread_tokens(thread_id) > max_tokens

    async def compact(self, thread_id: str, retain: int = 0) -> CompactionResult:
        """Replace older tool output with a placeholder.

        The most recent ``retain`` TOOL_RESULT events are kept verbatim. Every
        older result that has not been compacted yet gets its output replaced by
        a placeholder carrying the size it used to have, unless the output is
        no longer than that placeholder. One local SYSTEM_MESSAGE summarizing
        the savings is appended when anything changed, so calling this again
        on an already-compacted thread changes nothing.
        """
        if retain < 0:
            raise ValueError("retain must be >= 0")

        async with self._compaction_locks[thread_id]:
            events = await self.get_events(thread_id)
            tool_results = [e for e in events if e.type == EventType.TOOL_RESULT]
            candidates = tool_results[: max(len(tool_results) - retain, 0)]

            replacements: list[ThreadEvent] = []
            bytes_saved = 0
            tokens_saved = 0
            for event in candidates:
                if event.compacted:
                    continue
                result: ToolResult = event.data
                original_bytes = len(result.output.encode("utf-8"))
                original_tokens = estimate_tokens(result.output)
                placeholder = COMPACTED_PLACEHOLDER.format(
                    bytes=original_bytes, tokens=original_tokens
                )
                placeholder_bytes = len(placeholder.encode("utf-8"))
                if original_bytes <= placeholder_bytes:
                    continue
                compacted = ToolResult(
                    call_id=result.call_id,
                    tool_name=result.tool_name,
                    output=placeholder,
                    is_error=result.is_error,
                    safety=result.safety,
                    status=result.status,
                )
                replacements.append(event.with_payload(compacted))
                bytes_saved += original_bytes - placeholder_bytes
                tokens_saved += max(original_tokens - estimate_tokens(placeholder), 0)

            if not replacements:
                logger.debug("Thread %s: nothing to compact", thread_id)
                return CompactionResult(0, 0, 0, None)

            await self.store.replace_events(thread_id, replacements)

            count = len(replacements)
            noun = "tool result" if count == 1 else "tool results"
            summary = f"Compacted {count} {noun} to save about {tokens_saved} tokens."
            event = await self.add_event(
                thread_id, EventType.SYSTEM_MESSAGE, TextPayload(text=summary, local=True)
            )

        logger.info(
            "Thread %s compacted: %d tool results, ~%d tokens (%d bytes) saved",
            thread_id,
            count,
            tokens_saved,
            bytes_saved,
        )
        return CompactionResult(count, bytes_saved, tokens_saved, event)
