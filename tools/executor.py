"""Tool executor: resolve, parse, validate, police, run, time and record one tool call."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from agent.config import ToolExecutionConfig
from agent.exceptions import (
    ArgumentParseError,
    ExecutionFailureError,
    ExecutionTimeoutError,
    InvalidArgumentsError,
    ToolError,
    ToolNotFoundError,
)
from tools.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

# Extra wall-clock allowance on top of a tool's own timeout before the
# executor cancels it from outside.
_BACKSTOP_MARGIN = 1.0


@dataclass
class ExecutionOutcome:
    """Structured result of one dispatched tool call."""
    tool_name: str
    success: bool
    output: Any = None
    error: str | None = None
    error_type: str | None = None
    duration_ms: float = 0.0
    details: dict | None = None

    @property
    def status(self) -> str:
        return "success" if self.success else "error"

    def result_payload(self) -> Any:
        """What the client and the model see as the tool's result."""
        if self.success:
            return self.output
        payload = {"error": self.error, "error_type": self.error_type}
        if self.details:
            payload.update(self.details)
        return payload

    def to_content(self) -> str:
        payload = self.result_payload()
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, default=str)


class ToolExecutor:
    """Runs tool calls against a registry; optionally records them in a store."""

    def __init__(self, registry: ToolRegistry, config: ToolExecutionConfig, store=None):
        self.registry = registry
        self.config = config
        self.store = store

    async def execute(
        self,
        tool_name: str,
        raw_arguments: str | dict | None,
        message_id: str | None = None,
    ) -> ExecutionOutcome:
        """Execute one call. Never raises for tool-level failures."""
        raw_text = _argument_text(raw_arguments)
        record_id = None
        if self.store is not None:
            record_id = self.store.create_execution_record(message_id, tool_name, raw_text)

        start = time.monotonic()
        try:
            output = await self._run(tool_name, raw_arguments)
            outcome = ExecutionOutcome(tool_name=tool_name, success=True, output=output)
        except ToolError as e:
            outcome = ExecutionOutcome(
                tool_name=tool_name,
                success=False,
                error=str(e),
                error_type=e.error_type,
                details=getattr(e, "details", None) or None,
            )
        except Exception as e:
            logger.exception("Tool '%s' raised an unexpected error", tool_name)
            outcome = ExecutionOutcome(
                tool_name=tool_name,
                success=False,
                error=f"Tool '{tool_name}' error: {e}",
                error_type=ExecutionFailureError.error_type,
            )
        outcome.duration_ms = (time.monotonic() - start) * 1000

        if outcome.success:
            logger.info("Tool '%s' succeeded in %.0fms", tool_name, outcome.duration_ms)
        else:
            logger.info(
                "Tool '%s' failed in %.0fms: %s: %s",
                tool_name, outcome.duration_ms, outcome.error_type, outcome.error,
            )

        if record_id is not None:
            self.store.update_execution_record(
                record_id,
                status=outcome.status,
                duration_ms=outcome.duration_ms,
                output=outcome.output if outcome.success else None,
                error=None if outcome.success else outcome.error,
            )
        return outcome

    async def _run(self, tool_name: str, raw_arguments: str | dict | None) -> Any:
        tool = self.registry.lookup(tool_name)
        if tool is None:
            available = ", ".join(self.registry.tool_names)
            raise ToolNotFoundError(f"Tool '{tool_name}' not found. Available tools: {available}")

        args = parse_arguments(raw_arguments)

        violations = tool.validate(args)
        if violations:
            raise InvalidArgumentsError(violations)

        await tool.before_execution(args)

        limits = tool.limits(args)
        backstop = limits.timeout + limits.kill_grace + _BACKSTOP_MARGIN
        try:
            return await asyncio.wait_for(tool.execute(args, limits), timeout=backstop)
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(
                f"Execution timed out after {limits.timeout:g}s"
            ) from None


def parse_arguments(raw_arguments: str | dict | None) -> dict[str, Any]:
    """Turn model-supplied argument text into a dict; empty text means no arguments."""
    if raw_arguments is None:
        return {}
    if isinstance(raw_arguments, dict):
        return dict(raw_arguments)
    if not raw_arguments.strip():
        return {}
    try:
        data = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(f"Malformed tool arguments: {e}") from e
    if not isinstance(data, dict):
        raise ArgumentParseError("Tool arguments must be a JSON object")
    return data


def _argument_text(raw_arguments: str | dict | None) -> str:
    if raw_arguments is None:
        return ""
    if isinstance(raw_arguments, str):
        return raw_arguments
    return json.dumps(raw_arguments, default=str)
