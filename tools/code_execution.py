"""Code execution tool: runs a Python or JavaScript snippet in a fresh interpreter."""

import os
import tempfile
from typing import Any

from agent.exceptions import ExecutionFailureError, InvalidArgumentsError
from tools.base_tool import ExecutionLimits, Tool, ToolParameter
from tools.process import run_process

LANGUAGE_SUFFIXES = {
    "python": ".py",
    "javascript": ".js",
}


class CodeExecutionTool(Tool):
    name = "execute_code"
    description = "Execute Python or JavaScript code and return its output."
    parameters = {
        "language": ToolParameter("string", "python or javascript", required=True),
        "code": ToolParameter("string", "The code to execute.", required=True),
    }

    def validate(self, args: dict[str, Any]) -> list[str]:
        violations = super().validate(args)
        language = args.get("language")
        if isinstance(language, str) and language not in LANGUAGE_SUFFIXES:
            violations.append(
                f"Field 'language' must be one of: {', '.join(LANGUAGE_SUFFIXES)}"
            )
        return violations

    def _interpreter(self, language: str) -> str:
        if language == "python":
            return self.config.python_executable
        if language == "javascript":
            return self.config.node_executable
        raise InvalidArgumentsError([f"Unsupported language '{language}'"])

    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> dict:
        language = args["language"]
        interpreter = self._interpreter(language)

        os.makedirs(self.config.scratch_dir, exist_ok=True)
        os.makedirs(self.config.workspace_dir, exist_ok=True)
        fd, script_path = tempfile.mkstemp(
            prefix="sandbox_",
            suffix=LANGUAGE_SUFFIXES[language],
            dir=self.config.scratch_dir,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(args["code"])

            result = await run_process(
                [interpreter, script_path],
                cwd=self.config.workspace_dir,
                timeout=limits.timeout,
                max_output_bytes=limits.max_output_bytes,
                kill_grace=limits.kill_grace,
                env={**os.environ, "PYTHONDONTWRITEBYTECODE": "1"},
            )
        finally:
            try:
                os.unlink(script_path)
            except FileNotFoundError:
                pass

        if result.exit_code != 0:
            raise ExecutionFailureError(
                result.stderr.strip() or f"{language} process exited with code {result.exit_code}",
                details=result.as_dict(),
            )
        return result.as_dict()
