"""AgentNotification: the ephemeral messages an agent publishes to its UI.

Notifications are not thread events. Tokens in particular are only ever
published here; the thread receives the aggregated AGENT_MESSAGE.

Known types:
    state_change        data={"from": str, "to": str}
    agent_token         data={"token": str}
    agent_message       data={"event_id": str, "text": str}
    tool_call_start     data={"call_id": str, "tool": str, "input": dict}
    tool_call_complete  data={"call_id": str, "tool": str, "result": dict}
    approval_request    data={"call_id": str, "tool": str, "input": dict, "read_only": bool}
    approval_decision   data={"call_id": str, "tool": str, "decision": str}
    message_queued      data={"id": str, "queue_length": int}
    turn_start / turn_complete / turn_aborted   data={"metrics": dict}
    compaction_complete data={"compacted": int, "tokens_saved": int}
    thread_event_added  data={"event": dict}
    error               data={"message": str, "phase": str}
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    STATE_CHANGE = "state_change"
    AGENT_TOKEN = "agent_token"
    AGENT_MESSAGE = "agent_message"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_COMPLETE = "tool_call_complete"
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_DECISION = "approval_decision"
    MESSAGE_QUEUED = "message_queued"
    TURN_START = "turn_start"
    TURN_COMPLETE = "turn_complete"
    TURN_ABORTED = "turn_aborted"
    RETRY_ATTEMPT = "retry_attempt"
    RETRY_EXHAUSTED = "retry_exhausted"
    COMPACTION_COMPLETE = "compaction_complete"
    THREAD_EVENT_ADDED = "thread_event_added"
    ERROR = "error"


@dataclass(frozen=True)
class AgentNotification:
    type: NotificationType
    thread_id: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "thread_id": self.thread_id, **self.data}


Listener = Callable[[AgentNotification], None]


class Subscription:
    """Async iterator over the notifications published after subscribing."""

    def __init__(self, channel: NotificationChannel, maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[AgentNotification] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, notification: AgentNotification) -> None:
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self) -> AgentNotification:
        return await self._queue.get()

    def get_nowait(self) -> AgentNotification | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        self._channel.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> AgentNotification:
        return await self.get()


class NotificationChannel:
    """Fan-out of agent notifications to listeners and subscriptions.

    Publishing never blocks and never raises: a slow subscription drops
    messages (counted in ``Subscription.dropped``) and a failing listener is
    logged and skipped. The channel makes no assumption about the UI's
    threading model; listeners run synchronously on the event loop.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def subscribe(self, maxsize: int = 1000) -> Subscription:
        subscription = Subscription(self, maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, notification: AgentNotification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed on %s", notification.type.value)
        for subscription in list(self._subscriptions):
            subscription._offer(notification)
