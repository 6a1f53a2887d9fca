"""In-process tool executor backed by a :class:`ToolRegistry`.

Implements the executor contract used by
:class:`~canvasmind.ai.call.tool_request.ToolInvocationRequest`: the tool
named by the pending call runs with the call's arguments and its return
value becomes a tool-result interaction wrapped in a result envelope.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from ..ai_types import CancelToken
from ..call.capability import Capability
from ..call.errors import is_cancellation, is_network_error
from ..call.interactions import ToolResultInteraction
from ..call.result import CallResult
from .envelope import ToolResultContentType, ToolResultEnvelope, content_type_for
from .registry import ToolNotFoundError, ToolRegistry

if TYPE_CHECKING:
    from ..call.tool_request import ToolInvocationRequest

__all__ = [
    "RegistryToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
    "normalize_tool_result",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ToolExecutionError(Exception):
    """Raised when a tool fails; the cause's text is reported verbatim."""

    def __init__(self, message: str, tool_name: str = "", cause: Exception | None = None) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Executor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
        strict_mode: If True, unknown tools raise; otherwise the executor returns ``None``.
    """

    log_arguments: bool = False
    log_results: bool = False
    strict_mode: bool = False


def normalize_tool_result(
    value: Any,
    *,
    tool: str,
    provider: str | None = None,
    model: str | None = None,
    tool_call_id: str | None = None,
) -> dict[str, Any]:
    """Turn a tool's return value into an enveloped JSON object."""
    if isinstance(value, Mapping):
        root = dict(value)
        envelope = ToolResultEnvelope.try_get(root)
        if envelope is None:
            envelope = ToolResultEnvelope.create(
                tool,
                ToolResultContentType.OBJECT,
                provider=provider,
                model=model,
                tool_call_id=tool_call_id,
            )
            envelope.attach_to(root)
        return root
    envelope = ToolResultEnvelope.create(
        tool,
        content_type_for(value),
        provider=provider,
        model=model,
        tool_call_id=tool_call_id,
    )
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    elif isinstance(value, tuple):
        value = list(value)
    return ToolResultEnvelope.wrap(value, envelope)


# -----------------------------------------------------------------------------
# Tool Executor
# -----------------------------------------------------------------------------


class RegistryToolExecutor:
    """Runs registered tools for tool invocation requests.

    Example:
        executor = RegistryToolExecutor(registry)
        result = await ToolInvocationRequest.from_tool_call(call, executor).execute()
    """

    def __init__(self, registry: ToolRegistry, config: ExecutorConfig | None = None) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    def has_tool(self, name: str) -> bool:
        return self._registry.has(name)

    def get_parameters_schema(self, name: str) -> Mapping[str, Any] | None:
        registration = self._registry.get_registration(name)
        if registration is None or not registration.enabled:
            return None
        return registration.spec.parameters or None

    def get_required_capabilities(self, name: str) -> Capability:
        registration = self._registry.get_registration(name)
        if registration is None:
            return Capability.NONE
        return registration.spec.required_capabilities

    async def execute(self, request: ToolInvocationRequest, cancel: CancelToken | None = None) -> CallResult | None:
        """Run the pending call's tool.

        Returns:
            A success result holding one tool-result interaction, or ``None``
            when the tool is unknown and ``strict_mode`` is off.

        Raises:
            ToolNotFoundError: Unknown tool in strict mode.
            ToolExecutionError: The tool raised.
        """
        call = request.tool_call
        if call is None:
            return None
        name = call.name
        arguments = dict(call.arguments or {})

        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s (call_id=%s) with arguments: %s", name, call.id, arguments)
        else:
            LOGGER.debug("Executing tool %s (call_id=%s)", name, call.id)

        tool = self._registry.get(name)
        if tool is None:
            if self._config.strict_mode:
                raise ToolNotFoundError(name)
            LOGGER.warning("Tool '%s' not found or disabled", name)
            return None

        start_time = time.perf_counter()
        try:
            value = await tool.execute(arguments)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            if is_network_error(exc) or is_cancellation(exc):
                raise
            raise ToolExecutionError(message=str(exc), tool_name=name, cause=exc) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, value)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)

        if value is None:
            return None
        payload = normalize_tool_result(
            value,
            tool=name,
            provider=request.provider or None,
            model=request.model or None,
            tool_call_id=call.id or None,
        )
        interaction = ToolResultInteraction(id=call.id, name=name, result=payload, turn_id=call.turn_id)
        return CallResult.create_success([interaction], request)
