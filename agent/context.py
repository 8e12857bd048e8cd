"""Conversation context: the append-only list of turns one loop works on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolCallRequest:
    """A finalized tool call as requested by the model."""
    id: str
    name: str
    arguments: str

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class Turn:
    """One role-tagged entry in the conversation."""
    role: str
    content: str
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown role '{self.role}'")

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Iterable[ToolCallRequest] = ()) -> "Turn":
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> "Turn":
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)

    @property
    def tool_payload(self) -> dict[str, Any] | None:
        """Structured part of the turn, as stored by the persistence layer."""
        if self.tool_calls:
            return {"tool_calls": [tc.to_message() for tc in self.tool_calls]}
        if self.role == "tool":
            return {"tool_call_id": self.tool_call_id, "name": self.name}
        return None

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_message() for tc in self.tool_calls]
        if self.role == "tool":
            message["tool_call_id"] = self.tool_call_id
            message["name"] = self.name
        return message


@dataclass
class ConversationContext:
    """Ordered turns of one conversation. Only ever appended to."""
    system_prompt: str = ""
    _turns: list[Turn] = field(default_factory=list)

    @classmethod
    def from_messages(cls, messages: Iterable[dict], system_prompt: str = "") -> "ConversationContext":
        """Seed a context from client-supplied {role, content} messages."""
        context = cls(system_prompt=system_prompt)
        for message in messages:
            role = message.get("role")
            if role not in ("user", "assistant"):
                continue
            context.append(Turn(role=role, content=str(message.get("content") or "")))
        return context

    def append(self, turn: Turn) -> int:
        self._turns.append(turn)
        return len(self._turns)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def to_messages(self) -> list[dict[str, Any]]:
        """Render the request-ready message list for the model."""
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(turn.to_message() for turn in self._turns)
        return messages
