"""
Thread storage port and the in-memory backend.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Protocol

from agent_runtime.errors import AlreadyExistsError, NotFoundError
from agent_runtime.threads.types import EventPayload, EventType, Thread, ThreadEvent, utcnow


def generate_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


class ThreadStore(Protocol):
    """Append/read primitive the runtime depends on.

    Implementations must assign sequence numbers atomically per thread:
    two appends to the same thread never observe the same counter value,
    while appends to different threads do not contend.
    """

    async def create_thread(self, thread_id: str) -> Thread: ...

    async def get_thread(self, thread_id: str) -> Thread | None: ...

    async def list_threads(self) -> list[str]: ...

    async def append_event(
        self, thread_id: str, event_type: EventType, data: EventPayload
    ) -> ThreadEvent: ...

    async def get_events(self, thread_id: str) -> list[ThreadEvent]: ...

    async def replace_events(self, thread_id: str, events: list[ThreadEvent]) -> None: ...

    async def clear_events(self, thread_id: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryThreadStore(ThreadStore):
    def __init__(self) -> None:
        self._created: dict[str, datetime] = {}
        self._events: dict[str, list[ThreadEvent]] = {}
        self._next_sequence: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _require(self, thread_id: str) -> list[ThreadEvent]:
        events = self._events.get(thread_id)
        if events is None:
            raise NotFoundError("Thread", thread_id)
        return events

    async def create_thread(self, thread_id: str) -> Thread:
        if thread_id in self._events:
            raise AlreadyExistsError("Thread", thread_id)
        created_at = utcnow()
        self._created[thread_id] = created_at
        self._events[thread_id] = []
        self._next_sequence[thread_id] = 1
        return Thread(id=thread_id, created_at=created_at)

    async def get_thread(self, thread_id: str) -> Thread | None:
        events = self._events.get(thread_id)
        if events is None:
            return None
        return Thread(
            id=thread_id, created_at=self._created[thread_id], events=tuple(events)
        )

    async def list_threads(self) -> list[str]:
        return sorted(self._events, key=lambda t: self._created[t])

    async def append_event(
        self, thread_id: str, event_type: EventType, data: EventPayload
    ) -> ThreadEvent:
        async with self._locks[thread_id]:
            events = self._require(thread_id)
            sequence = self._next_sequence[thread_id]
            self._next_sequence[thread_id] = sequence + 1
            event = ThreadEvent(
                id=generate_event_id(),
                thread_id=thread_id,
                type=event_type,
                sequence=sequence,
                timestamp=utcnow(),
                data=data,
            )
            events.append(event)
            return event

    async def get_events(self, thread_id: str) -> list[ThreadEvent]:
        return list(self._require(thread_id))

    async def replace_events(self, thread_id: str, events: list[ThreadEvent]) -> None:
        async with self._locks[thread_id]:
            current = self._require(thread_id)
            by_id = {e.id: e for e in events}
            for index, existing in enumerate(current):
                replacement = by_id.get(existing.id)
                if replacement is not None:
                    if replacement.sequence != existing.sequence:
                        raise ValueError(
                            f"Replacement for {existing.id} changes its sequence number"
                        )
                    current[index] = replacement

    async def clear_events(self, thread_id: str) -> None:
        async with self._locks[thread_id]:
            # The sequence counter keeps counting so numbers are never reused.
            self._require(thread_id).clear()

    async def close(self) -> None:
        return None
