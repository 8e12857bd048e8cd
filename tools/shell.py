"""Shell tool: runs one command in the workspace directory."""

import math
import os
from typing import Any

from agent.exceptions import ExecutionFailureError
from tools.base_tool import ExecutionLimits, Tool, ToolParameter
from tools.process import run_process
from tools.security import check_command


class ShellTool(Tool):
    name = "execute_shell"
    description = "Execute a shell command in the sandbox workspace."
    parameters = {
        "command": ToolParameter("string", "The shell command to execute.", required=True),
        "timeout": ToolParameter("number", "Timeout in seconds (default 10)."),
    }

    def limits(self, args: dict[str, Any]) -> ExecutionLimits:
        base = super().limits(args)
        requested = args.get("timeout")
        if requested is None or not math.isfinite(requested) or requested <= 0:
            return base
        return ExecutionLimits(
            timeout=min(float(requested), self.config.max_timeout),
            max_output_bytes=base.max_output_bytes,
            kill_grace=base.kill_grace,
        )

    async def before_execution(self, args: dict[str, Any]) -> None:
        check_command(args["command"])

    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> dict:
        os.makedirs(self.config.workspace_dir, exist_ok=True)
        result = await run_process(
            command=args["command"],
            cwd=self.config.workspace_dir,
            timeout=limits.timeout,
            max_output_bytes=limits.max_output_bytes,
            kill_grace=limits.kill_grace,
        )
        if result.exit_code != 0:
            raise ExecutionFailureError(
                result.stderr.strip() or f"Command exited with code {result.exit_code}",
                details=result.as_dict(),
            )
        return result.as_dict()
