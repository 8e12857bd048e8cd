"""Accumulates streamed assistant text and fragmented tool calls for one model call."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from agent.context import ToolCallRequest


@dataclass
class ToolCallFragment:
    """Partially built tool call for one stream index."""
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""

    def finalize(self) -> ToolCallRequest:
        call_id = self.id or f"call_{uuid.uuid4().hex[:12]}"
        return ToolCallRequest(id=call_id, name=self.name, arguments=self.arguments)


@dataclass
class AccumulatedTurn:
    """What one model call produced once its stream ended."""
    text: str
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


class StreamAccumulator:
    """
    Consumes OpenAI-style delta dicts.

    A delta may carry ``content`` and/or ``tool_calls``; each tool call fragment
    has an ``index`` plus optional ``id`` and ``function.name`` /
    ``function.arguments`` pieces. Pieces for the same index are concatenated
    in arrival order.
    """

    def __init__(self):
        self._text_parts: list[str] = []
        self._fragments: dict[int, ToolCallFragment] = {}

    def feed(self, delta: dict) -> str:
        """Absorb one delta. Returns the text fragment it carried, if any."""
        text = delta.get("content") or ""
        if text:
            self._text_parts.append(text)

        for position, piece in enumerate(delta.get("tool_calls") or []):
            index = piece.get("index")
            if not isinstance(index, int):
                index = position
            fragment = self._fragments.get(index)
            if fragment is None:
                fragment = ToolCallFragment(index=index)
                self._fragments[index] = fragment
            if piece.get("id") and not fragment.id:
                fragment.id = piece["id"]
            function = piece.get("function") or {}
            if function.get("name"):
                fragment.name += function["name"]
            if function.get("arguments"):
                fragment.arguments += function["arguments"]

        return text

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def tool_call_count(self) -> int:
        return len(self._fragments)

    def finalize(self) -> AccumulatedTurn:
        """Return the text and the tool calls ordered by stream index."""
        calls = [self._fragments[i].finalize() for i in sorted(self._fragments)]
        return AccumulatedTurn(text=self.text, tool_calls=calls)
