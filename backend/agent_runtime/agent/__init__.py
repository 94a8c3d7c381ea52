"""Agent state machine, message queue and UI notifications."""

from agent_runtime.agent.core import Agent
from agent_runtime.agent.events import (
    AgentNotification,
    NotificationChannel,
    NotificationType,
    Subscription,
)
from agent_runtime.agent.queue import (
    MessageKind,
    MessagePriority,
    MessageQueue,
    QueuedMessage,
    QueueStats,
    is_user_authored,
)
from agent_runtime.agent.state import AgentState, SendResult, TurnMetrics

__all__ = [
    "Agent",
    "AgentNotification",
    "AgentState",
    "MessageKind",
    "MessagePriority",
    "MessageQueue",
    "NotificationChannel",
    "NotificationType",
    "QueueStats",
    "QueuedMessage",
    "SendResult",
    "Subscription",
    "TurnMetrics",
    "is_user_authored",
]
