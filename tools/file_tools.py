"""Filesystem tools confined to the workspace directory."""

import asyncio
import os
from typing import Any

from agent.exceptions import ExecutionFailureError
from tools.base_tool import ExecutionLimits, Tool, ToolParameter
from tools.security import resolve_in_base


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read the contents of a file in the workspace."
    parameters = {
        "path": ToolParameter("string", "Path to the file, relative to the workspace.", required=True),
    }

    async def before_execution(self, args: dict[str, Any]) -> None:
        resolve_in_base(self.config.workspace_dir, args["path"])

    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> str:
        path = resolve_in_base(self.config.workspace_dir, args["path"])
        return await asyncio.to_thread(_read_text, path, limits.max_output_bytes)


class WriteFileTool(Tool):
    name = "write_file"
    description = "Write content to a file in the workspace, creating directories as needed."
    parameters = {
        "path": ToolParameter("string", "Path to the file, relative to the workspace.", required=True),
        "content": ToolParameter("string", "Content to write.", required=True),
    }

    async def before_execution(self, args: dict[str, Any]) -> None:
        resolve_in_base(self.config.workspace_dir, args["path"])

    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> str:
        path = resolve_in_base(self.config.workspace_dir, args["path"])
        content = args["content"]
        await asyncio.to_thread(_write_text, path, content)
        return f"Successfully wrote {len(content)} characters to {args['path']}"


def _read_text(path: str, max_bytes: int) -> str:
    try:
        size = os.path.getsize(path)
        if size > max_bytes:
            raise ExecutionFailureError(f"File is {size} bytes; limit is {max_bytes}")
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as e:
        raise ExecutionFailureError(str(e)) from e


def _write_text(path: str, content: str) -> None:
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise ExecutionFailureError(str(e)) from e
