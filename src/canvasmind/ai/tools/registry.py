"""Registry of tools the model may call."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..call.filters import Filter
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    tool: Tool
    spec: ToolSpec
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


def _key(name: str | None) -> str:
    return (name or "").strip().lower()


class ToolRegistry:
    """Case-insensitive registry of tools.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            spec=ToolSpec(name="list_components", description="List canvas components"),
            handler=lambda args: {"list": canvas.component_names()},
        )
        specs = registry.select("list_components")
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        key = _key(tool.name)
        if not key:
            raise ValueError("Tool name must not be empty")
        if key in self._tools and not allow_override:
            raise DuplicateToolError(tool.name)

        registration = ToolRegistration(
            name=tool.name,
            tool=tool,
            spec=tool.spec,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[key] = registration
        LOGGER.debug("Registered tool: %s", tool.name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        return self.register(
            SimpleTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
            metadata=metadata,
        )

    def unregister(self, name: str) -> bool:
        if self._tools.pop(_key(name), None) is None:
            return False
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    def get(self, name: str) -> Tool | None:
        """Return the tool when registered and enabled."""
        registration = self._tools.get(_key(name))
        if registration is None or not registration.enabled:
            return None
        return registration.tool

    def get_required(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_registration(self, name: str) -> ToolRegistration | None:
        return self._tools.get(_key(name))

    def has(self, name: str) -> bool:
        registration = self._tools.get(_key(name))
        return registration is not None and registration.enabled

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [reg.spec for reg in self._tools.values() if reg.enabled or include_disabled]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [reg.name for reg in self._tools.values() if reg.enabled or include_disabled]

    def select(self, tool_filter: str | None) -> list[ToolSpec]:
        """Enabled tools admitted by *tool_filter*, matched by name or category."""
        parsed = Filter.parse(tool_filter)
        selected: list[ToolSpec] = []
        for registration in self._tools.values():
            if not registration.enabled:
                continue
            spec = registration.spec
            name_key = _key(spec.name)
            category_key = _key(spec.category)
            if name_key in parsed.exclude or category_key in parsed.exclude:
                continue
            if parsed.should_include(name_key) or (not parsed.include_all and parsed.should_include(category_key)):
                selected.append(spec)
        return selected

    def get_function_definitions(self, tool_filter: str | None) -> list[dict[str, Any]]:
        return [spec.to_function_definition() for spec in self.select(tool_filter)]

    def enable(self, name: str) -> bool:
        registration = self._tools.get(_key(name))
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(_key(name))
        if registration is None:
            return False
        registration.enabled = False
        return True

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return _key(name) in self._tools
