from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, enum.Enum):
    USER_MESSAGE = "USER_MESSAGE"
    AGENT_MESSAGE = "AGENT_MESSAGE"
    AGENT_TOKEN = "AGENT_TOKEN"
    TOOL_CALL = "TOOL_CALL"
    TOOL_RESULT = "TOOL_RESULT"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE"
    APPROVAL_REQUEST = "APPROVAL_REQUEST"
    APPROVAL_DECISION = "APPROVAL_DECISION"


class ToolSafetyClass(str, enum.Enum):
    READ_ONLY = "read-only"
    DESTRUCTIVE = "destructive"


class ToolResultStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DENIED = "denied"
    ABORTED = "aborted"


class ApprovalDecision(str, enum.Enum):
    ALLOW_ONCE = "allow_once"
    ALLOW_SESSION = "allow_session"
    DENY = "deny"


# ── Payload variants, one per event type ────────────────────────


@dataclass(frozen=True)
class TextPayload:
    """Payload for USER_MESSAGE, AGENT_MESSAGE, AGENT_TOKEN and SYSTEM_MESSAGE.

    ``local`` system messages are shown to the user but never sent to the
    provider (compaction notices, loop-limit notices).
    """

    text: str
    local: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> TextPayload:
        return cls(text=data["text"], local=data.get("local", False))


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    tool_name: str
    input: dict = field(default_factory=dict)
    parse_error: str | None = None  # set when the model sent malformed JSON

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ToolCall:
        return cls(
            call_id=data["call_id"],
            tool_name=data["tool_name"],
            input=data.get("input", {}),
            parse_error=data.get("parse_error"),
        )


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    tool_name: str
    output: str
    is_error: bool = False
    safety: ToolSafetyClass = ToolSafetyClass.DESTRUCTIVE
    status: ToolResultStatus = ToolResultStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "output": self.output,
            "is_error": self.is_error,
            "safety": self.safety.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ToolResult:
        return cls(
            call_id=data["call_id"],
            tool_name=data["tool_name"],
            output=data.get("output", ""),
            is_error=data.get("is_error", False),
            safety=ToolSafetyClass(data.get("safety", ToolSafetyClass.DESTRUCTIVE.value)),
            status=ToolResultStatus(data.get("status", ToolResultStatus.COMPLETED.value)),
        )

    @classmethod
    def error(
        cls,
        call: ToolCall,
        message: str,
        *,
        safety: ToolSafetyClass = ToolSafetyClass.DESTRUCTIVE,
        status: ToolResultStatus = ToolResultStatus.FAILED,
    ) -> ToolResult:
        return cls(
            call_id=call.call_id,
            tool_name=call.tool_name,
            output=message,
            is_error=True,
            safety=safety,
            status=status,
        )


@dataclass(frozen=True)
class ApprovalRequestPayload:
    call_id: str
    tool_name: str
    input: dict
    read_only: bool

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ApprovalRequestPayload:
        return cls(**data)


@dataclass(frozen=True)
class ApprovalDecisionPayload:
    call_id: str
    tool_name: str
    decision: ApprovalDecision
    source: str = "user"  # user | policy | session | invalid | error

    def to_dict(self) -> dict:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "decision": self.decision.value,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ApprovalDecisionPayload:
        return cls(
            call_id=data["call_id"],
            tool_name=data["tool_name"],
            decision=ApprovalDecision(data["decision"]),
            source=data.get("source", "user"),
        )


EventPayload = Union[
    TextPayload, ToolCall, ToolResult, ApprovalRequestPayload, ApprovalDecisionPayload
]

PAYLOAD_TYPES: dict[EventType, type] = {
    EventType.USER_MESSAGE: TextPayload,
    EventType.AGENT_MESSAGE: TextPayload,
    EventType.AGENT_TOKEN: TextPayload,
    EventType.SYSTEM_MESSAGE: TextPayload,
    EventType.TOOL_CALL: ToolCall,
    EventType.TOOL_RESULT: ToolResult,
    EventType.APPROVAL_REQUEST: ApprovalRequestPayload,
    EventType.APPROVAL_DECISION: ApprovalDecisionPayload,
}


def payload_from_dict(event_type: EventType, data: dict) -> EventPayload:
    return PAYLOAD_TYPES[event_type].from_dict(data)


def check_payload(event_type: EventType, data: Any) -> None:
    """Raise TypeError if ``data`` is not the variant that ``event_type`` carries."""
    expected = PAYLOAD_TYPES[event_type]
    if not isinstance(data, expected):
        raise TypeError(
            f"{event_type.value} events carry {expected.__name__}, "
            f"got {type(data).__name__}"
        )


# ── Events and threads ──────────────────────────────────────────


@dataclass(frozen=True)
class ThreadEvent:
    id: str
    thread_id: str
    type: EventType
    sequence: int
    timestamp: datetime
    data: EventPayload
    compacted: bool = False

    def with_payload(self, data: EventPayload, *, compacted: bool = True) -> ThreadEvent:
        """Return a replacement event; the appended instance is never mutated."""
        return replace(self, data=data, compacted=compacted)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "type": self.type.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data.to_dict(),
            "compacted": self.compacted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ThreadEvent:
        event_type = EventType(data["type"])
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            type=event_type,
            sequence=data["sequence"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            data=payload_from_dict(event_type, data["data"]),
            compacted=data.get("compacted", False),
        )


@dataclass(frozen=True)
class Thread:
    id: str
    created_at: datetime = field(default_factory=utcnow)
    events: tuple[ThreadEvent, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "events": [e.to_dict() for e in self.events],
        }
