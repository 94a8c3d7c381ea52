from agent_runtime.tools.builtin.command_tools import register_command_tools
from agent_runtime.tools.builtin.file_tools import register_file_tools
from agent_runtime.tools.registry import ToolRegistry


def build_tool_registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_file_tools(registry)
    register_command_tools(registry)
    return registry


__all__ = ["build_tool_registry", "register_command_tools", "register_file_tools"]
