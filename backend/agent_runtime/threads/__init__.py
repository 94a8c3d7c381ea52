"""Thread event log: types, storage backends and the manager."""

from agent_runtime.threads.manager import CompactionResult, ThreadManager, estimate_tokens
from agent_runtime.threads.store import InMemoryThreadStore, ThreadStore
from agent_runtime.threads.types import (
    ApprovalDecision,
    ApprovalDecisionPayload,
    ApprovalRequestPayload,
    EventType,
    TextPayload,
    Thread,
    ThreadEvent,
    ToolCall,
    ToolResult,
    ToolResultStatus,
    ToolSafetyClass,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalDecisionPayload",
    "ApprovalRequestPayload",
    "CompactionResult",
    "EventType",
    "InMemoryThreadStore",
    "TextPayload",
    "Thread",
    "ThreadEvent",
    "ThreadManager",
    "ThreadStore",
    "ToolCall",
    "ToolResult",
    "ToolResultStatus",
    "ToolSafetyClass",
    "estimate_tokens",
]
