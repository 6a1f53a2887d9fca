"""Invocation of a single tool call requested by the model."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Protocol, runtime_checkable

from ...services import telemetry
from ..ai_types import CancelToken
from ..utils.cancellation import await_cancellable
from .body import ConversationBody
from .builder import BodyBuilder
from .capability import Capability, to_detailed_string
from .errors import ErrorKind, classify_exception
from .interactions import ToolCallInteraction
from .messages import MessageCode, MessageOrigin, RuntimeMessage, has_errors, merge_messages
from .models import ModelCapabilityRegistryProtocol
from .policies import DEFAULT_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS, MIN_TIMEOUT_SECONDS
from .result import CallResult
from .validation import validate_tool_arguments

__all__ = [
    "ToolExecutorProtocol",
    "ToolCatalogProtocol",
    "ToolInvocationRequest",
    "TOOL_CANCELLED_MESSAGE",
    "TOOL_NO_RESULT_MESSAGE",
]

LOGGER = logging.getLogger(__name__)

TOOL_CANCELLED_MESSAGE = "Tool execution cancelled or timed out"
TOOL_NO_RESULT_MESSAGE = "Tool execution returned no result"


@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """Runs the tool named by a :class:`ToolInvocationRequest`."""

    async def execute(self, request: ToolInvocationRequest, cancel: CancelToken | None = None) -> CallResult | None:
        ...


@runtime_checkable
class ToolCatalogProtocol(Protocol):
    """Optional executor extension exposing tool specs for validation."""

    def has_tool(self, name: str) -> bool:
        ...

    def get_parameters_schema(self, name: str) -> Mapping[str, Any] | None:
        ...

    def get_required_capabilities(self, name: str) -> Capability:
        ...


class ToolInvocationRequest:
    """Wraps exactly one pending tool call together with its executor.

    The body normally holds just the call. Results are reported as
    :class:`CallResult` objects; this class never raises for tool failures.
    """

    def __init__(
        self,
        executor: ToolExecutorProtocol,
        *,
        body: ConversationBody | None = None,
        provider: str = "",
        model: str = "",
        timeout_seconds: float | None = None,
        models: ModelCapabilityRegistryProtocol | None = None,
    ) -> None:
        self.executor = executor
        self.body = body if body is not None else BodyBuilder.create().build()
        self.provider = provider or ""
        self.model = model or ""
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
        self.models = models
        # Tool results carry no usage metrics of their own.
        self.skip_metrics_validation = True
        self.provider_instance = None
        self._messages: list[RuntimeMessage] = []

    @classmethod
    def from_tool_call(
        cls,
        call: ToolCallInteraction,
        executor: ToolExecutorProtocol,
        *,
        provider: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        models: ModelCapabilityRegistryProtocol | None = None,
    ) -> ToolInvocationRequest:
        body = BodyBuilder.create().add(call).build()
        return cls(
            executor,
            body=body,
            provider=provider or "",
            model=model or "",
            timeout_seconds=timeout_seconds,
            models=models,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def tool_call(self) -> ToolCallInteraction | None:
        pending = self.body.pending_tool_calls()
        return pending[0] if pending else None

    @property
    def messages(self) -> tuple[RuntimeMessage, ...]:
        _, validation = self.is_valid()
        return merge_messages(self._messages, validation)

    def add_message(self, message: RuntimeMessage) -> None:
        self._messages.append(message)

    def describe(self) -> dict[str, Any]:
        call = self.tool_call
        return {
            "provider": self.provider,
            "model": self.model,
            "tool": call.name if call is not None else None,
            "tool_call_id": call.id if call is not None else None,
            "timeout_seconds": self.timeout_seconds,
        }

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_valid(self) -> tuple[bool, tuple[RuntimeMessage, ...]]:
        messages: list[RuntimeMessage] = []
        pending = self.body.pending_tool_calls()
        if len(pending) != 1:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    "Body must have exactly one pending tool call",
                    MessageCode.BODY_INVALID,
                )
            )
        else:
            messages.extend(self._validate_call(pending[0]))
        ranked = merge_messages(messages)
        return (not has_errors(ranked), ranked)

    def _validate_call(self, call: ToolCallInteraction) -> list[RuntimeMessage]:
        messages: list[RuntimeMessage] = []
        name = (call.name or "").strip()
        if not name:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION, "Tool call name is required", MessageCode.TOOL_VALIDATION_ERROR
                )
            )
            return messages
        if call.arguments is None:
            messages.append(RuntimeMessage.info(MessageOrigin.VALIDATION, f"Tool call '{name}' has no arguments"))
        if isinstance(self.executor, ToolCatalogProtocol):
            if not self.executor.has_tool(name):
                messages.append(
                    RuntimeMessage.error(
                        MessageOrigin.VALIDATION,
                        f"Tool '{name}' is not registered",
                        MessageCode.TOOL_VALIDATION_ERROR,
                    )
                )
            else:
                schema = self.executor.get_parameters_schema(name)
                messages.extend(validate_tool_arguments(name, call.arguments, schema))
                messages.extend(self._validate_capabilities(name))
        return messages

    def _validate_capabilities(self, name: str) -> list[RuntimeMessage]:
        """Check the selected model supports what the tool requires."""
        if self.models is None or not self.provider.strip() or not self.model.strip():
            return []
        required = self.executor.get_required_capabilities(name)
        if not required or self.models.validate_capabilities(self.provider, self.model, required):
            return []
        return [
            RuntimeMessage.error(
                MessageOrigin.VALIDATION,
                f"Selected model '{self.model}' on provider '{self.provider}' does not support required "
                f"capabilities ({to_detailed_string(required)}) for tool '{name}'",
                MessageCode.CAPABILITY_MISMATCH,
            )
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def effective_timeout(self) -> float:
        timeout = self.timeout_seconds
        if timeout is None or timeout <= 0:
            timeout = DEFAULT_TIMEOUT_SECONDS
        return min(max(timeout, MIN_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS)

    async def execute(self, cancel: CancelToken | None = None) -> CallResult:
        """Run the tool through the executor and standardize failures."""
        ok, validation = self.is_valid()
        if not ok:
            LOGGER.warning(
                "Tool call validation failed: %s",
                "; ".join(message.text for message in validation if message.is_error),
            )
            return CallResult.create_error("Tool call validation failed", self)

        call = self.tool_call
        tool_name = call.name if call is not None else ""
        started = time.perf_counter()
        telemetry.emit(
            telemetry.TOOL_STARTED,
            {"provider": self.provider, "model": self.model, "tool_name": tool_name, "timestamp": time.time()},
        )
        try:
            result = await await_cancellable(
                self.executor.execute(self, cancel),
                timeout=self.effective_timeout(),
                cancel=cancel,
            )
        except Exception as exc:
            classified = classify_exception(exc)
            LOGGER.warning("Tool %s failed: %s", tool_name, classified.message)
            if classified.kind is ErrorKind.CANCELLED:
                result = CallResult.create_tool_error(TOOL_CANCELLED_MESSAGE, self, code=classified.code)
            elif classified.kind is ErrorKind.NETWORK:
                result = CallResult.create_network_error(classified.message, self)
            else:
                result = CallResult.create_tool_error(classified.message, self)

        if result is not None and result.request is None:
            result.request = self
        if result is None or (result.body.is_empty and not has_errors(result.messages)):
            result = CallResult.create_tool_error(TOOL_NO_RESULT_MESSAGE, self)

        telemetry.emit(
            telemetry.TOOL_COMPLETED,
            {
                "provider": self.provider,
                "model": self.model,
                "tool_name": tool_name,
                "timestamp": time.time(),
                "completion_time": time.perf_counter() - started,
                "success": result.success,
            },
        )
        return result

    def __repr__(self) -> str:
        call = self.tool_call
        return f"ToolInvocationRequest(tool={call.name if call else None!r}, provider={self.provider!r})"
