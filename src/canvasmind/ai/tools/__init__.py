"""Tool registry, executor and result envelope.

Example:
    from canvasmind.ai.tools import RegistryToolExecutor, ToolRegistry, ToolSpec

    registry = ToolRegistry()
    registry.register_function(
        spec=ToolSpec(name="greet", description="Greet someone"),
        handler=lambda args: f"Hello, {args.get('name', 'World')}!",
    )
    executor = RegistryToolExecutor(registry)
"""

from .envelope import ENVELOPE_KEY, ToolResultContentType, ToolResultEnvelope, content_type_for
from .executor import ExecutorConfig, RegistryToolExecutor, ToolExecutionError, normalize_tool_result
from .registry import DuplicateToolError, ToolNotFoundError, ToolRegistration, ToolRegistry
from .types import AsyncToolHandler, SimpleTool, Tool, ToolCategory, ToolHandler, ToolSpec

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    "ToolCategory",
    # registry.py
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    # executor.py
    "RegistryToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
    "normalize_tool_result",
    # envelope.py
    "ENVELOPE_KEY",
    "ToolResultContentType",
    "ToolResultEnvelope",
    "content_type_for",
]
