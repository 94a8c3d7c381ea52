from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field


class AgentState(str, enum.Enum):
    IDLE = "idle"
    THINKING = "thinking"
    STREAMING = "streaming"
    TOOL_EXECUTION = "tool_execution"
    AWAITING_APPROVAL = "awaiting_approval"


@dataclass
class TurnMetrics:
    """Rough per-turn accounting; token counts are estimates."""

    turn_id: str = field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:12]}")
    started_at: float = field(default_factory=time.monotonic)
    tokens_in: int = 0
    tokens_out: int = 0
    provider_calls: int = 0
    tool_calls: int = 0
    # Provider retries across every round of the turn.
    retry_attempts: int = 0
    retry_delay: float = 0.0
    retry_successful: bool = True
    last_retry_error: str | None = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def to_dict(self) -> dict:
        return {
            "turn_id": self.turn_id,
            "elapsed": round(self.elapsed, 3),
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "provider_calls": self.provider_calls,
            "tool_calls": self.tool_calls,
            "retry_attempts": self.retry_attempts,
            "retry_delay": round(self.retry_delay, 3),
            "retry_successful": self.retry_successful,
            "last_retry_error": self.last_retry_error,
        }


@dataclass
class SendResult:
    """Outcome of ``Agent.send_message``.

    status: completed | queued | aborted | error | cancelled
    """

    status: str
    message_id: str | None = None
    error: str | None = None
    metrics: TurnMetrics | None = None

    @property
    def queued(self) -> bool:
        return self.status == "queued"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message_id": self.message_id,
            "error": self.error,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }
