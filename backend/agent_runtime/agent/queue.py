from __future__ import annotations

import enum
import itertools
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from agent_runtime.threads.types import utcnow


class MessageKind(str, enum.Enum):
    USER = "user"
    SYSTEM = "system"
    TASK_NOTIFICATION = "task_notification"


class MessagePriority(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class QueuedMessage:
    content: str
    kind: MessageKind = MessageKind.USER
    priority: MessagePriority = MessagePriority.NORMAL
    id: str = field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=time.monotonic)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": self.content,
            "priority": self.priority.value,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class QueueStats:
    queue_length: int
    high_priority_count: int
    oldest_message_age: float | None  # seconds, None when the queue is empty

    def to_dict(self) -> dict:
        return {
            "queue_length": self.queue_length,
            "high_priority_count": self.high_priority_count,
            "oldest_message_age": self.oldest_message_age,
        }


def is_user_authored(message: QueuedMessage) -> bool:
    return message.kind == MessageKind.USER


class MessageQueue:
    """Per-agent buffer for messages that arrive while a turn is in flight.

    High priority entries come out first; within a tier, entries come out in
    arrival order (timestamp, then insertion order for identical timestamps).
    """

    def __init__(self) -> None:
        self._messages: list[tuple[int, float, int, QueuedMessage]] = []
        self._counter = itertools.count()

    @staticmethod
    def _rank(priority: MessagePriority) -> int:
        return 0 if priority == MessagePriority.HIGH else 1

    def enqueue(self, message: QueuedMessage) -> QueuedMessage:
        entry = (self._rank(message.priority), message.timestamp, next(self._counter), message)
        self._messages.append(entry)
        self._messages.sort(key=lambda e: e[:3])
        return message

    def dequeue_next(self) -> QueuedMessage | None:
        if not self._messages:
            return None
        return self._messages.pop(0)[3]

    def peek(self) -> QueuedMessage | None:
        return self._messages[0][3] if self._messages else None

    def contents(self) -> list[QueuedMessage]:
        return [entry[3] for entry in self._messages]

    def stats(self) -> QueueStats:
        messages = self.contents()
        oldest_age = None
        if messages:
            oldest = min(m.timestamp for m in messages)
            oldest_age = max(0.0, time.monotonic() - oldest)
        return QueueStats(
            queue_length=len(messages),
            high_priority_count=sum(
                1 for m in messages if m.priority == MessagePriority.HIGH
            ),
            oldest_message_age=oldest_age,
        )

    def clear(
        self, predicate: Callable[[QueuedMessage], bool] | None = is_user_authored
    ) -> int:
        """Remove matching entries and return how many were removed.

        The default only drops user-authored messages so that system and task
        notifications survive. Pass ``None`` to empty the queue.
        """
        before = len(self._messages)
        if predicate is None:
            self._messages.clear()
        else:
            self._messages = [e for e in self._messages if not predicate(e[3])]
        return before - len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
