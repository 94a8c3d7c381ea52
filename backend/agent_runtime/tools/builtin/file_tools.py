from pathlib import Path

from agent_runtime.constants import (
    MAX_FILE_READ_CHARS,
    MAX_FILE_WRITE_BYTES,
    READ_FILE_TRUNCATION_MSG,
)
from agent_runtime.errors import ToolExecutionError
from agent_runtime.tools.registry import ToolContext, ToolRegistry, ToolSafety


def _validate_path(context: ToolContext, relative_path: str) -> Path:
    """Resolve and validate that a path stays within the workspace."""
    workspace = context.workspace.resolve()
    full_path = (workspace / relative_path).resolve()
    if not full_path.is_relative_to(workspace):
        raise ToolExecutionError("Access denied: path escapes the workspace")
    return full_path


async def read_file(context: ToolContext, path: str) -> str:
    """Read a file from the workspace."""
    file_path = _validate_path(context, path)
    if not file_path.exists():
        raise ToolExecutionError(f"File not found: {path}")
    if not file_path.is_file():
        raise ToolExecutionError(f"Not a file: {path}")
    try:
        content = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ToolExecutionError(f"Binary file cannot be read: {path}") from exc
    if len(content) > MAX_FILE_READ_CHARS:
        return content[:MAX_FILE_READ_CHARS] + READ_FILE_TRUNCATION_MSG.format(len(content))
    return content


async def list_directory(context: ToolContext, path: str = ".") -> str:
    dir_path = _validate_path(context, path)
    if not dir_path.is_dir():
        raise ToolExecutionError(f"Directory not found: {path}")
    entries = sorted(dir_path.iterdir())
    if not entries:
        return "(empty directory)"
    return "\n".join(f"{'[dir] ' if e.is_dir() else ''}{e.name}" for e in entries)


async def write_file(context: ToolContext, path: str, content: str) -> str:
    """Write or create a file in the workspace."""
    file_path = _validate_path(context, path)
    if len(content.encode("utf-8")) > MAX_FILE_WRITE_BYTES:
        raise ToolExecutionError("File content exceeds 1MB limit")

    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding="utf-8")
    return f"Successfully wrote {len(content)} chars to {path}"


async def edit_file(context: ToolContext, path: str, old_text: str, new_text: str) -> str:
    """Replace the first occurrence of old_text with new_text in a file."""
    file_path = _validate_path(context, path)
    if not file_path.exists():
        raise ToolExecutionError(f"File not found: {path}")

    content = file_path.read_text(encoding="utf-8")
    if old_text not in content:
        raise ToolExecutionError(f"old_text not found in {path}. The file may have changed.")

    count = content.count(old_text)
    file_path.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
    return f"Successfully replaced text in {path} ({count} occurrence(s) found, replaced first)"


def register_file_tools(registry: ToolRegistry) -> None:
    """Register all file tools with the registry."""
    registry.register(
        name="read_file",
        description="Read the contents of a file in the workspace. Path is relative to the workspace root.",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Relative path to the file (e.g., 'src/main.py')",
                },
            },
            "required": ["path"],
        },
        handler=read_file,
        safety=ToolSafety(read_only=True, idempotent=True),
    )

    registry.register(
        name="list_directory",
        description="List the entries of a directory in the workspace.",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Relative directory path (default: '.')",
                    "default": ".",
                },
            },
        },
        handler=list_directory,
        safety=ToolSafety(read_only=True, idempotent=True),
    )

    registry.register(
        name="write_file",
        description="Create or overwrite a file in the workspace. Creates parent directories automatically.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path for the file"},
                "content": {
                    "type": "string",
                    "description": "The full content to write to the file",
                },
            },
            "required": ["path", "content"],
        },
        handler=write_file,
        safety=ToolSafety(read_only=False, idempotent=True),
    )

    registry.register(
        name="edit_file",
        description="Replace a specific text substring in a file. Use this for surgical edits instead of rewriting the entire file.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
                "old_text": {
                    "type": "string",
                    "description": "The exact text to find and replace",
                },
                "new_text": {
                    "type": "string",
                    "description": "The text to replace it with",
                },
            },
            "required": ["path", "old_text", "new_text"],
        },
        handler=edit_file,
    )
