"""Tool registry, approval gate and executor."""

from agent_runtime.tools.approval import (
    ApprovalCallback,
    ApprovalPolicy,
    PendingApproval,
    PendingApprovalCallback,
    StaticApprovalCallback,
    TimeoutApprovalCallback,
)
from agent_runtime.tools.executor import ApprovalRecorder, ToolExecutor, validate_input
from agent_runtime.tools.registry import ToolContext, ToolDefinition, ToolRegistry, ToolSafety

__all__ = [
    "ApprovalCallback",
    "ApprovalPolicy",
    "ApprovalRecorder",
    "PendingApproval",
    "PendingApprovalCallback",
    "StaticApprovalCallback",
    "TimeoutApprovalCallback",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "ToolSafety",
    "validate_input",
]
