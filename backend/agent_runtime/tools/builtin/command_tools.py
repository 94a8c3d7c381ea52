import asyncio
import logging

from agent_runtime.constants import COMMAND_OUTPUT_MAX_CHARS, SHELL_COMMAND_TIMEOUT_SECONDS
from agent_runtime.errors import ToolExecutionError
from agent_runtime.tools.registry import ToolContext, ToolRegistry, ToolSafety

logger = logging.getLogger(__name__)


async def run_command(context: ToolContext, command: str, working_dir: str = ".") -> str:
    """Run a shell command inside the workspace."""
    workspace = context.workspace.resolve()
    cwd = (workspace / working_dir).resolve()

    if not cwd.is_relative_to(workspace):
        raise ToolExecutionError("working_dir must be within the workspace")
    if not cwd.is_dir():
        raise ToolExecutionError(f"Directory not found: {working_dir}")

    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=SHELL_COMMAND_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolExecutionError(
            f"Command timed out after {SHELL_COMMAND_TIMEOUT_SECONDS} seconds"
        )
    except asyncio.CancelledError:
        # abort() landed while the command was running
        logger.info("Killing command on cancellation: %s", command)
        proc.kill()
        await proc.wait()
        raise

    output = ""
    if stdout:
        output += stdout.decode(errors="replace")
    if stderr:
        output += "\n[stderr]\n" + stderr.decode(errors="replace")

    if len(output) > COMMAND_OUTPUT_MAX_CHARS:
        output = output[:COMMAND_OUTPUT_MAX_CHARS] + f"\n... (truncated, {len(output)} chars total)"

    if proc.returncode != 0:
        raise ToolExecutionError(f"[exit code: {proc.returncode}]\n{output.strip()}")

    return output.strip() or "(no output)"


def register_command_tools(registry: ToolRegistry) -> None:
    """Register command tools with the registry."""
    registry.register(
        name="run_command",
        description=(
            "Run a shell command in the workspace directory. "
            f"Timeout: {SHELL_COMMAND_TIMEOUT_SECONDS} seconds."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute",
                },
                "working_dir": {
                    "type": "string",
                    "description": "Subdirectory to run in (relative to the workspace, default: '.')",
                    "default": ".",
                },
            },
            "required": ["command"],
        },
        handler=run_command,
        safety=ToolSafety(read_only=False, idempotent=False),
    )
