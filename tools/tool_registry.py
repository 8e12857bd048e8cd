"""Tool catalog: name -> handler, plus the schema list advertised to the model."""

from typing import Any

from agent.config import ToolExecutionConfig
from tools.base_tool import Tool, ToolDefinition


class ToolRegistry:
    """Holds registered tools in registration order. No I/O."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Add a tool; a later registration under the same name replaces it."""
        if not tool.name:
            raise ValueError(f"{type(tool).__name__} has no name")
        self._tools[tool.name] = tool

    def lookup(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def definition(self, name: str) -> ToolDefinition | None:
        tool = self._tools.get(name)
        return tool.definition if tool else None

    @property
    def tool_names(self) -> list[str]:
        """Registered tool names in registration order."""
        return list(self._tools)

    def schema(self) -> list[dict[str, Any]]:
        """Request-ready schemas for every tool, in registration order."""
        return [tool.definition.schema() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def create_default_registry(config: ToolExecutionConfig) -> ToolRegistry:
    """Build the registry with every built-in tool."""
    from tools.code_execution import CodeExecutionTool
    from tools.file_tools import ReadFileTool, WriteFileTool
    from tools.shell import ShellTool
    from tools.web_search import WebSearchTool

    registry = ToolRegistry()
    for tool_cls in (ShellTool, ReadFileTool, WriteFileTool, CodeExecutionTool, WebSearchTool):
        registry.register(tool_cls(config))
    return registry
