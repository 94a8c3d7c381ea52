"""Tests for the workspace-confined builtin tools."""

from __future__ import annotations

import asyncio
import sys

import pytest

from agent_runtime.errors import AlreadyExistsError, ToolExecutionError
from agent_runtime.threads.types import ApprovalDecision, ToolCall, ToolSafetyClass
from agent_runtime.tools.approval import ApprovalPolicy, StaticApprovalCallback
from agent_runtime.tools.builtin import build_tool_registry
from agent_runtime.tools.builtin.command_tools import run_command
from agent_runtime.tools.builtin.file_tools import (
    edit_file,
    list_directory,
    read_file,
    write_file,
)
from agent_runtime.tools.executor import ToolExecutor
from agent_runtime.tools.registry import ToolContext, ToolSafety


def _context(tmp_path) -> ToolContext:
    return ToolContext(thread_id="t1", workspace=tmp_path)


def test_registry_contents_and_safety():
    registry = build_tool_registry()
    assert registry.list_tools() == [
        "read_file",
        "list_directory",
        "write_file",
        "edit_file",
        "run_command",
    ]
    assert registry.require("read_file").safety == ToolSafety(read_only=True, idempotent=True)
    assert registry.require("run_command").safety.classification == ToolSafetyClass.DESTRUCTIVE
    schema = registry.get_openai_schema()[0]
    assert schema["type"] == "function"
    assert schema["function"]["name"] == "read_file"

    with pytest.raises(AlreadyExistsError):
        registry.register("read_file", "dup", {}, read_file)


def test_write_read_edit_list(tmp_path):
    context = _context(tmp_path)

    async def run():
        await write_file(context, "src/app.py", "print('hi')\nprint('hi')\n")
        edited = await edit_file(context, "src/app.py", "hi", "bye")
        content = await read_file(context, "src/app.py")
        listing = await list_directory(context)
        return edited, content, listing

    edited, content, listing = asyncio.run(run())
    assert "2 occurrence(s)" in edited
    assert content == "print('bye')\nprint('hi')\n"
    assert listing == "[dir] src"


def test_paths_cannot_escape_the_workspace(tmp_path):
    context = _context(tmp_path / "ws")
    (tmp_path / "ws").mkdir()
    (tmp_path / "secret.txt").write_text("nope")

    with pytest.raises(ToolExecutionError):
        asyncio.run(read_file(context, "../secret.txt"))
    with pytest.raises(ToolExecutionError):
        asyncio.run(write_file(context, "../../evil.txt", "x"))


def test_read_missing_file(tmp_path):
    with pytest.raises(ToolExecutionError):
        asyncio.run(read_file(_context(tmp_path), "missing.txt"))


def test_run_command(tmp_path):
    context = _context(tmp_path)
    output = asyncio.run(run_command(context, f'{sys.executable} -c "print(21 * 2)"'))
    assert output == "42"


def test_run_command_nonzero_exit(tmp_path):
    context = _context(tmp_path)
    with pytest.raises(ToolExecutionError) as info:
        asyncio.run(run_command(context, f'{sys.executable} -c "import sys; sys.exit(3)"'))
    assert "[exit code: 3]" in str(info.value)


def test_builtin_tools_through_the_executor(tmp_path):
    executor = ToolExecutor(build_tool_registry(), ApprovalPolicy())
    context = _context(tmp_path)
    approval = StaticApprovalCallback(ApprovalDecision.ALLOW_ONCE)

    async def run():
        written = await executor.execute(
            ToolCall(call_id="c1", tool_name="write_file", input={"path": "a.txt", "content": "x"}),
            context,
            approval=approval,
            session_allowed=set(),
        )
        missing = await executor.execute(
            ToolCall(call_id="c2", tool_name="read_file", input={"path": "b.txt"}),
            context,
            approval=approval,
            session_allowed=set(),
        )
        return written, missing

    written, missing = asyncio.run(run())
    assert not written.is_error
    assert (tmp_path / "a.txt").read_text() == "x"
    assert missing.is_error
    assert missing.output == "Error: File not found: b.txt"
