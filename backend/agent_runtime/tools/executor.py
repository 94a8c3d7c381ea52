"""Tool call execution behind the approval gate.

Per call: resolve the tool, validate its input, consult the session
allow-set and the global policy, ask the approval callback when needed, run
the handler, and turn every failure into an error ``ToolResult``. Only
cancellation escapes, so ``Agent.abort()`` can stop a running tool.
"""

from __future__ import annotations

import logging
from typing import Protocol

from agent_runtime.errors import ToolExecutionError, ValidationError
from agent_runtime.threads.types import (
    ApprovalDecision,
    ToolCall,
    ToolResult,
    ToolResultStatus,
)
from agent_runtime.tools.approval import ApprovalCallback, ApprovalPolicy
from agent_runtime.tools.registry import ToolContext, ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

DENIED_MESSAGE = "denied"

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


class ApprovalRecorder(Protocol):
    """Receives the gate's request and decision so they can be audited."""

    async def approval_requested(self, call: ToolCall, read_only: bool) -> None: ...

    async def approval_decided(
        self, call: ToolCall, decision: ApprovalDecision, source: str
    ) -> None: ...


def validate_input(parameters: dict, arguments: dict) -> None:
    """Check required keys and primitive types against a JSON-schema object.

    Raises ValidationError; the executor converts it into an error result.
    """
    if not isinstance(arguments, dict):
        raise ValidationError("tool input must be a JSON object")

    properties: dict = parameters.get("properties", {})
    missing = [name for name in parameters.get("required", []) if name not in arguments]
    if missing:
        raise ValidationError(f"missing required parameter(s): {', '.join(missing)}")

    if parameters.get("additionalProperties") is False:
        unexpected = sorted(set(arguments) - set(properties))
        if unexpected:
            raise ValidationError(f"unexpected parameter(s): {', '.join(unexpected)}")

    for name, value in arguments.items():
        expected = properties.get(name, {}).get("type")
        if expected not in _JSON_TYPES:
            continue
        # bool is an int subclass; do not let True pass as an integer.
        if isinstance(value, bool) and expected in ("integer", "number"):
            raise ValidationError(f"parameter '{name}' must be of type {expected}")
        if not isinstance(value, _JSON_TYPES[expected]):
            raise ValidationError(f"parameter '{name}' must be of type {expected}")


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, policy: ApprovalPolicy | None = None) -> None:
        self.registry = registry
        self.policy = policy or ApprovalPolicy()

    def tool_definitions(self) -> list[ToolDefinition]:
        return [
            t for t in self.registry.definitions() if not self.policy.is_disabled(t.name)
        ]

    async def execute(
        self,
        call: ToolCall,
        context: ToolContext,
        *,
        approval: ApprovalCallback,
        session_allowed: set[str],
        recorder: ApprovalRecorder | None = None,
    ) -> ToolResult:
        tool = self.registry.get(call.tool_name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", call.tool_name)
            return ToolResult.error(call, f"Error: Unknown tool '{call.tool_name}'")

        safety = tool.safety.classification

        try:
            if call.parse_error:
                raise ValidationError(f"invalid JSON in tool arguments: {call.parse_error}")
            validate_input(tool.parameters, call.input)
        except ValidationError as exc:
            return ToolResult.error(call, f"Error: {exc}", safety=safety)

        if self.policy.is_disabled(tool.name):
            if recorder is not None:
                await recorder.approval_decided(call, ApprovalDecision.DENY, "policy")
            return ToolResult.error(
                call,
                f"{DENIED_MESSAGE}: {tool.name} is disabled",
                safety=safety,
                status=ToolResultStatus.DENIED,
            )

        if tool.name not in session_allowed and not self.policy.auto_approves(tool):
            if recorder is not None:
                await recorder.approval_requested(call, tool.safety.read_only)
            try:
                raw_decision = await approval.request(tool.name, call.input)
            except Exception as exc:
                logger.exception("Approval callback failed for tool call %s", call.call_id)
                if recorder is not None:
                    await recorder.approval_decided(call, ApprovalDecision.DENY, "error")
                return ToolResult.error(
                    call,
                    f"Error: approval failed: {type(exc).__name__}: {exc}",
                    safety=safety,
                )

            source = "user"
            try:
                decision = ApprovalDecision(raw_decision)
            except ValueError:
                logger.error(
                    "Unknown approval decision %r for tool call %s, denying",
                    raw_decision,
                    call.call_id,
                )
                decision = ApprovalDecision.DENY
                source = "invalid"
            if recorder is not None:
                await recorder.approval_decided(call, decision, source)

            if decision not in (ApprovalDecision.ALLOW_ONCE, ApprovalDecision.ALLOW_SESSION):
                logger.info("Tool call %s (%s) denied", call.call_id, tool.name)
                return ToolResult.error(
                    call, DENIED_MESSAGE, safety=safety, status=ToolResultStatus.DENIED
                )
            if decision == ApprovalDecision.ALLOW_SESSION:
                session_allowed.add(tool.name)

        return await self._run(tool, call, context)

    async def _run(self, tool: ToolDefinition, call: ToolCall, context: ToolContext) -> ToolResult:
        safety = tool.safety.classification
        try:
            output = await tool.handler(context=context, **call.input)
        except ToolExecutionError as exc:
            return ToolResult.error(call, f"Error: {exc}", safety=safety)
        except Exception as exc:
            logger.exception("Tool %s raised while handling call %s", tool.name, call.call_id)
            return ToolResult.error(
                call,
                f"Error: tool {tool.name} raised {type(exc).__name__}: {exc}",
                safety=safety,
            )

        return ToolResult(
            call_id=call.call_id,
            tool_name=tool.name,
            output=str(output),
            is_error=False,
            safety=safety,
        )
