"""Tool system types.

Tools are the host's side effects (canvas edits, lookups, scrapers) exposed
to the model. The call core only sees them through the executor.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

from ..call.capability import Capability, to_detailed_string

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
    "ToolCategory",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    CANVAS = "canvas"
    COMPONENTS = "components"
    KNOWLEDGE = "knowledge"
    WEB = "web"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool; matched case-insensitively.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's arguments.
        category: Tool category, also usable as a tool-filter key.
        mutates_canvas: Whether the tool changes the host document.
        required_capabilities: Capabilities the calling model must support
            for this tool to run.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: str = ToolCategory.UTILITY
    mutates_canvas: bool = False
    required_capabilities: Capability = Capability.NONE

    def to_function_definition(self) -> dict[str, Any]:
        """Function-calling definition handed to provider encoders."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {},
            "category": self.category,
            "mutates_canvas": self.mutates_canvas,
            "required_capabilities": to_detailed_string(self.required_capabilities),
        }


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]

AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Run the tool; exceptions are turned into tool errors by the caller."""
        ...


@dataclass
class SimpleTool:
    """Tool wrapping a plain sync or async callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="count_components", description="Count canvas components"),
            handler=lambda args: {"count": len(canvas.components)},
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        return self.handler(arguments)
