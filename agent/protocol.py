"""Loop events and their newline-delimited JSON wire encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

CONTENT_TYPE = "application/x-ndjson"


@dataclass(frozen=True)
class LoopEvent:
    """Something the orchestration loop wants the client to see."""
    type: str
    content: str | None = None
    tool: str | None = None
    input: str | None = None
    output: Any = None

    @classmethod
    def text(cls, content: str) -> "LoopEvent":
        return cls(type="text", content=content)

    @classmethod
    def tool_start(cls, tool: str, arguments: str) -> "LoopEvent":
        return cls(type="tool_start", tool=tool, input=arguments)

    @classmethod
    def tool_end(cls, tool: str, output: Any) -> "LoopEvent":
        return cls(type="tool_end", tool=tool, output=output)

    @classmethod
    def error(cls, message: str) -> "LoopEvent":
        return cls(type="error", content=message)


class ProtocolEncoder:
    """Maps loop events to wire frames, one JSON object per line."""

    def frame(self, event: LoopEvent) -> dict[str, Any]:
        if event.type in ("text", "error"):
            return {"type": event.type, "content": event.content}
        if event.type == "tool_start":
            return {"type": "tool_start", "tool": event.tool, "input": event.input}
        if event.type == "tool_end":
            return {"type": "tool_end", "tool": event.tool, "output": event.output}
        raise ValueError(f"Unknown event type '{event.type}'")

    def encode(self, event: LoopEvent) -> str:
        return json.dumps(self.frame(event), default=str) + "\n"

    @staticmethod
    def decode(line: str) -> dict[str, Any]:
        return json.loads(line)
