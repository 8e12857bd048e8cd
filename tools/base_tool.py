"""Abstract base class for all tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from agent.config import ToolExecutionConfig

# JSON schema type name -> accepted Python types
JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


@dataclass(frozen=True)
class ToolParameter:
    """One declared tool parameter."""
    type: str
    description: str
    required: bool = False

    def __post_init__(self):
        if self.type not in JSON_TYPES:
            raise ValueError(f"Unsupported parameter type '{self.type}'")

    def accepts(self, value: Any) -> bool:
        if isinstance(value, bool) and self.type != "boolean":
            return False
        return isinstance(value, JSON_TYPES[self.type])


@dataclass(frozen=True)
class ToolDefinition:
    """Immutable catalog entry for a tool."""
    name: str
    description: str
    parameters: Mapping[str, ToolParameter] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def required(self) -> list[str]:
        return [name for name, param in self.parameters.items() if param.required]

    def schema(self) -> dict[str, Any]:
        """Request-ready JSON schema for the model."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {
                    name: {"type": param.type, "description": param.description}
                    for name, param in self.parameters.items()
                },
                "required": self.required,
            },
        }


@dataclass(frozen=True)
class ExecutionLimits:
    """Per-call limits handed to a tool by the executor."""
    timeout: float
    max_output_bytes: int
    kill_grace: float = 1.0


class Tool(ABC):
    """Base class for all agent tools. Subclass this to create new tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, ToolParameter] = {}

    def __init__(self, config: ToolExecutionConfig):
        self.config = config

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.parameters)

    def validate(self, args: dict[str, Any]) -> list[str]:
        """Return every schema violation in args (empty when valid)."""
        violations = []
        for name, param in self.parameters.items():
            if param.required and name not in args:
                violations.append(f"Missing required field: {name}")
        for name, value in args.items():
            param = self.parameters.get(name)
            if param is None:
                continue
            if not param.accepts(value):
                violations.append(
                    f"Field '{name}' expects type '{param.type}', got '{_json_type_name(value)}'"
                )
        return violations

    def limits(self, args: dict[str, Any]) -> ExecutionLimits:
        """Execution limits for this call. Override to honour per-call overrides."""
        return ExecutionLimits(
            timeout=self.config.timeout_for(self.name),
            max_output_bytes=self.config.max_output_bytes,
            kill_grace=self.config.kill_grace,
        )

    async def before_execution(self, args: dict[str, Any]) -> None:
        """Security policy hook. Raise a ToolError to stop the call."""
        pass

    @abstractmethod
    async def execute(self, args: dict[str, Any], limits: ExecutionLimits) -> Any:
        """Execute the tool. Must be implemented by subclasses."""
        ...


def _json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    for name in ("number", "string", "object", "array"):
        if isinstance(value, JSON_TYPES[name]):
            return name
    return type(value).__name__
