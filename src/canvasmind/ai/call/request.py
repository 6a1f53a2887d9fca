"""The validated unit of work sent to a provider.

A :class:`CallRequest` binds a provider name, a requested model, a declared
capability and a conversation body. Validation is side-effect free and
blocks I/O; :meth:`CallRequest.execute` never raises for provider, network
or timeout failures and instead returns a failed
:class:`~canvasmind.ai.call.result.CallResult`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Any, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...services import telemetry
from ..ai_types import CancelToken
from ..utils.cancellation import await_cancellable
from .body import DEFAULT_FILTER, ConversationBody
from .builder import BodyBuilder
from .capability import Capability, has_input, has_output, to_detailed_string
from .context import CallContext
from .errors import RETRYABLE_EXCEPTIONS, ErrorKind, classify_exception, exception_message
from .interactions import TextInteraction
from .messages import MessageCode, MessageOrigin, RuntimeMessage, has_errors, merge_messages
from .metrics import Metrics
from .policies import PolicyPipeline
from .providers import Provider
from .result import CallResult, CallStatus
from .streaming import StreamingAdapter, StreamingOptions

__all__ = ["CallRequest", "DeltaCallback", "STREAMING_OPTIONS"]

LOGGER = logging.getLogger(__name__)

STREAMING_OPTIONS = StreamingOptions(coalesce_tokens=True, coalesce_delay_ms=40, preferred_chunk_size=24)

DeltaCallback = Callable[[CallResult], None]


class CallRequest:
    """A provider call bound to a conversation body.

    Args:
        context: Registries and settings the request resolves against.
        provider: Provider name; empty uses the configured default provider.
        model: Requested model; empty uses the configured model for the
            default provider, then the provider default.
        capability: Declared capability. Schema and tool filter on the body
            may widen it (see :attr:`capability`).
        body: Conversation to send.
        wants_streaming: Stream through the provider's adapter when possible.
        timeout_seconds: Per-attempt deadline; defaults to the provider or
            application setting.
        policies: Request/response policy pipeline.

    Example:
        request = CallRequest(context, provider="openai", body=body)
        result = await request.execute()
    """

    def __init__(
        self,
        context: CallContext,
        *,
        provider: str = "",
        model: str = "",
        capability: Capability = Capability.TEXT2TEXT,
        body: ConversationBody | None = None,
        wants_streaming: bool = False,
        timeout_seconds: float | None = None,
        policies: PolicyPipeline | None = None,
    ) -> None:
        self.context = context
        settings = context.settings
        default_provider = (settings.default_provider or "").strip()
        self._provider = (provider or "").strip() or default_provider
        self._requested_model = (model or "").strip()
        if not self._requested_model and default_provider and self._provider.lower() == default_provider.lower():
            self._requested_model = (settings.model or "").strip()
        self._declared_capability = Capability(capability)
        self._body = body if body is not None else ConversationBody()
        self.wants_streaming = wants_streaming
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else self._default_timeout()
        self.policies = policies if policies is not None else PolicyPipeline.default()
        self.skip_metrics_validation = False
        self._messages: list[RuntimeMessage] = []
        self._model_memo: tuple[tuple[str, str, Capability], str] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def provider(self) -> str:
        return self._provider

    @provider.setter
    def provider(self, value: str) -> None:
        self._provider = (value or "").strip()

    @property
    def provider_instance(self) -> Provider | None:
        return self.context.get_provider(self._provider)

    @property
    def requested_model(self) -> str:
        return self._requested_model

    @property
    def model(self) -> str:
        """Model that will be called, resolved through the provider."""
        return self._resolve_model()

    @model.setter
    def model(self, value: str) -> None:
        self._requested_model = (value or "").strip()

    @property
    def declared_capability(self) -> Capability:
        return self._declared_capability

    @property
    def capability(self) -> Capability:
        """Declared capability widened by what the body requires."""
        effective = self._declared_capability
        if self._body.requires_json_output:
            effective |= Capability.JSON_OUTPUT
        if self._uses_tools():
            effective |= Capability.FUNCTION_CALLING
        return effective

    @capability.setter
    def capability(self, value: Capability) -> None:
        self._declared_capability = Capability(value)

    @property
    def body(self) -> ConversationBody:
        return self._body

    @body.setter
    def body(self, value: ConversationBody) -> None:
        self._body = value if value is not None else ConversationBody()

    @property
    def messages(self) -> tuple[RuntimeMessage, ...]:
        """Messages attached to the request plus current validation messages."""
        _, validation = self.is_valid()
        return merge_messages(self._messages, validation)

    def add_message(self, message: RuntimeMessage) -> None:
        self._messages.append(message)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_valid(self, *, stream: bool | None = None) -> tuple[bool, tuple[RuntimeMessage, ...]]:
        """Validate the request without side effects.

        Args:
            stream: Validate as if streaming were requested (or not) instead
                of using :attr:`wants_streaming`.

        Returns:
            ``(ok, messages)`` where messages are ranked Error first.
        """
        messages: list[RuntimeMessage] = []
        messages.extend(self._capability_notes())
        provider = self._validate_provider(messages)
        capability = self.capability
        if not has_input(capability) or not has_output(capability):
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    f"Capability must include an input and an output capability (got {to_detailed_string(capability)})",
                    MessageCode.CAPABILITY_MISMATCH,
                )
            )
        if provider is not None:
            model = self._validate_model(provider, messages)
            streaming = self.wants_streaming if stream is None else stream
            if streaming and model:
                self._validate_streaming(provider, model, messages)
        self._validate_body(messages)
        ranked = merge_messages(messages)
        return (not has_errors(ranked), ranked)

    def _validate_provider(self, messages: list[RuntimeMessage]) -> Provider | None:
        if not self._provider:
            messages.append(
                RuntimeMessage.error(MessageOrigin.VALIDATION, "Provider is required", MessageCode.PROVIDER_MISSING)
            )
            return None
        provider = self.provider_instance
        if provider is None:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    f"Unknown provider '{self._provider}'",
                    MessageCode.UNKNOWN_PROVIDER,
                )
            )
        return provider

    def _validate_model(self, provider: Provider, messages: list[RuntimeMessage]) -> str:
        capability = self.capability
        if capability == Capability.NONE:
            return self._requested_model
        resolved = self._resolve_model()
        requested = self._requested_model
        detail = to_detailed_string(capability)

        if not resolved:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    f"No capable model found for provider '{self._provider}' with capability {detail}",
                    MessageCode.NO_CAPABLE_MODEL,
                )
            )
        if not requested:
            if resolved:
                messages.append(
                    RuntimeMessage.info(
                        MessageOrigin.VALIDATION,
                        f"Model is not specified - the default model '{resolved}' will be used",
                    )
                )
            return resolved
        if resolved == requested:
            return resolved

        registered = self.context.models.get_capabilities(provider.name, requested)
        if registered is None:
            messages.append(
                RuntimeMessage.info(
                    MessageOrigin.VALIDATION,
                    f"Requested model '{requested}' is not registered for provider '{self._provider}'.",
                    MessageCode.UNKNOWN_MODEL,
                )
            )
        elif resolved:
            messages.append(
                RuntimeMessage.info(
                    MessageOrigin.VALIDATION,
                    f"Requested model '{requested}' does not support {detail}; selected '{resolved}' instead.",
                    MessageCode.CAPABILITY_MISMATCH,
                )
            )
        else:
            messages.append(
                RuntimeMessage.warning(
                    MessageOrigin.VALIDATION,
                    f"Requested model '{requested}' does not support {detail}",
                    MessageCode.CAPABILITY_MISMATCH,
                )
            )
        return resolved

    def _validate_streaming(self, provider: Provider, model: str, messages: list[RuntimeMessage]) -> None:
        if not self.context.settings.enable_streaming:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    "Streaming requested but streaming is disabled in settings.",
                    MessageCode.STREAMING_DISABLED_PROVIDER,
                )
            )
            return
        if not self.context.provider_settings(provider).enable_streaming:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    f"Streaming requested but provider '{self._provider}' has streaming disabled in settings.",
                    MessageCode.STREAMING_DISABLED_PROVIDER,
                )
            )
            return
        record = self.context.models.get_capabilities(provider.name, model)
        if record is None or not record.supports_streaming:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    f"Streaming requested but the selected model '{model}' on provider "
                    f"'{self._provider}' does not support streaming.",
                    MessageCode.STREAMING_UNSUPPORTED_MODEL,
                )
            )

    def _validate_body(self, messages: list[RuntimeMessage]) -> None:
        body = self._body
        if body.is_empty:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION, "At least one interaction is required", MessageCode.BODY_INVALID
                )
            )
        if self.capability & Capability.JSON_OUTPUT and not body.requires_json_output:
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    "JsonOutput capability requires a non-empty JsonOutputSchema",
                    MessageCode.BODY_INVALID,
                )
            )
        if not body.turn_ids_valid():
            messages.append(
                RuntimeMessage.error(
                    MessageOrigin.VALIDATION,
                    "Every interaction must carry a turn id",
                    MessageCode.BODY_INVALID,
                )
            )

    def _capability_notes(self) -> list[RuntimeMessage]:
        notes: list[RuntimeMessage] = []
        declared = self._declared_capability
        if self._body.requires_json_output and not declared & Capability.JSON_OUTPUT:
            notes.append(
                RuntimeMessage.info(
                    MessageOrigin.VALIDATION,
                    "Body requires JSON output but Capability lacks JsonOutput - treating request as JsonOutput",
                )
            )
        if self._uses_tools() and not declared & Capability.FUNCTION_CALLING:
            notes.append(
                RuntimeMessage.info(
                    MessageOrigin.VALIDATION,
                    "Tool filter provided but Capability lacks FunctionCalling - "
                    "treating request as requiring FunctionCalling",
                )
            )
        return notes

    def _uses_tools(self) -> bool:
        tool_filter = (self._body.tool_filter or "").strip()
        return bool(tool_filter) and tool_filter != DEFAULT_FILTER

    # ------------------------------------------------------------------
    # Model resolution
    # ------------------------------------------------------------------

    def _resolve_model(self) -> str:
        capability = self.capability
        if capability == Capability.NONE:
            return self._requested_model
        provider = self.provider_instance
        if provider is None:
            return ""
        key = (self._provider.lower(), self._requested_model, capability)
        if self._model_memo is not None and self._model_memo[0] == key:
            return self._model_memo[1]
        selected = provider.select_model(capability, self._requested_model) or ""
        self._model_memo = (key, selected)
        LOGGER.debug("Resolved model %r for %s/%s", selected, self._provider, to_detailed_string(capability))
        return selected

    # ------------------------------------------------------------------
    # Encoding and description
    # ------------------------------------------------------------------

    def encoded_body(self) -> str | None:
        """Provider wire payload, or ``None`` when the request is invalid."""
        ok, _ = self.is_valid()
        provider = self.provider_instance
        if not ok or provider is None:
            return None
        return provider.encode(self)

    def describe(self) -> dict[str, Any]:
        return {
            "provider": self._provider,
            "model": self.model,
            "requested_model": self._requested_model,
            "capability": to_detailed_string(self.capability),
            "streaming": self.wants_streaming,
            "timeout_seconds": self.timeout_seconds,
            "interactions": len(self._body.interactions),
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        *,
        stream: bool | None = None,
        cancel: CancelToken | None = None,
        on_delta: DeltaCallback | None = None,
    ) -> CallResult:
        """Run the request through policies, validation and the provider.

        Args:
            stream: Override :attr:`wants_streaming` for this call.
            cancel: Cooperative cancel token; setting it aborts the call.
            on_delta: Receives each streamed partial result.

        Returns:
            A finished result. Failures are reported through its messages.
        """
        streaming = self.wants_streaming if stream is None else stream
        started = time.perf_counter()

        await self.policies.apply_request(self)
        ok, validation = self.is_valid(stream=streaming)
        telemetry.emit(
            telemetry.CALL_VALIDATED,
            {**self._telemetry_payload(), "success": ok, "detail": f"{len(validation)} message(s)"},
        )
        if not ok:
            LOGGER.warning(
                "Request validation failed: %s",
                "; ".join(message.text for message in validation if message.is_error),
            )
            result = CallResult.create_error("Request validation failed", self)
            # Keep per-call findings; request.messages revalidates without the stream override.
            for message in validation:
                result.add_message(message)
            result.set_completion_time(time.perf_counter() - started)
            return result

        provider = self.provider_instance
        if provider is None:
            return CallResult.create_provider_error("Provider is missing", self)

        if self.context.settings.debug_logging:
            LOGGER.debug("Request payload for %s: %s", self._provider, self._body.to_dict())
        telemetry.emit(telemetry.CALL_STARTED, self._telemetry_payload())

        event = telemetry.CALL_COMPLETED
        try:
            result = await self._dispatch(provider, streaming, cancel, on_delta)
        except Exception as exc:
            classified = classify_exception(exc)
            LOGGER.warning("Provider call to %s failed: %s", self._provider, classified.message)
            if classified.kind is ErrorKind.NETWORK:
                result = CallResult.create_network_error(classified.message, self, code=classified.code)
            else:
                result = CallResult.create_provider_error(classified.message, self, code=classified.code)
            event = telemetry.CALL_CANCELLED if classified.kind is ErrorKind.CANCELLED else telemetry.CALL_FAILED

        if result is None:
            result = CallResult.create_provider_error("Provider returned no response", self)
        if result.request is None:
            result.request = self

        if result.success:
            self._attach_estimates(result)
        await self.policies.apply_response(result, self)
        if result.metrics.completion_time == 0:
            result.set_completion_time(time.perf_counter() - started)
        result.status = CallStatus.FINISHED

        success = result.success
        if event == telemetry.CALL_COMPLETED and not success:
            event = telemetry.CALL_FAILED
        metrics = result.metrics
        telemetry.emit(
            event,
            {
                **self._telemetry_payload(),
                "success": success,
                "input_tokens": metrics.input_tokens,
                "output_tokens": metrics.output_tokens,
                "completion_time": metrics.completion_time,
            },
        )
        return result

    async def _dispatch(
        self,
        provider: Provider,
        streaming: bool,
        cancel: CancelToken | None,
        on_delta: DeltaCallback | None,
    ) -> CallResult | None:
        if streaming:
            adapter = provider.get_streaming_adapter()
            if adapter is not None:
                return await await_cancellable(
                    self._consume_stream(adapter, cancel, on_delta),
                    timeout=self.timeout_seconds,
                    cancel=cancel,
                )
            LOGGER.debug("Provider %s has no streaming adapter; using a regular call", self._provider)
        return await self._call_with_retries(provider, cancel)

    async def _call_with_retries(self, provider: Provider, cancel: CancelToken | None) -> CallResult | None:
        async for attempt in self._retrying():
            with attempt:
                return await await_cancellable(
                    provider.call(self, cancel),
                    timeout=self.timeout_seconds,
                    cancel=cancel,
                )
        return None

    async def _consume_stream(
        self,
        adapter: StreamingAdapter,
        cancel: CancelToken | None,
        on_delta: DeltaCallback | None,
    ) -> CallResult | None:
        final: CallResult | None = None
        try:
            async for delta in adapter.stream(self, STREAMING_OPTIONS, cancel):
                if delta is None:
                    continue
                final = delta
                if on_delta is not None:
                    on_delta(delta)
                if _is_complete_text(delta):
                    break
        except Exception as exc:
            LOGGER.warning("Streaming from %s failed", self._provider, exc_info=True)
            return CallResult.create_provider_error(f"Streaming failed: {exception_message(exc)}", self)
        return final

    def _attach_estimates(self, result: CallResult) -> None:
        """Record heuristic token estimates on the last new interaction."""
        new_items = result.body.new_interactions()
        if not new_items or result.metrics.total_estimated_tokens:
            return
        estimate = Metrics.estimate(
            _joined_text(self._body.interactions),
            _joined_text(new_items),
            model=self.model or None,
            registry=self.context.token_counters,
        )
        last = result.body.interactions[-1]
        metrics = replace(
            last.metrics,
            estimated_input_tokens=estimate.estimated_input_tokens,
            estimated_output_tokens=estimate.estimated_output_tokens,
        )
        result.body = BodyBuilder.from_body(result.body).replace_last(last.with_metrics(metrics), mark_new=False).build()

    def _retrying(self) -> AsyncRetrying:
        settings = self.context.settings
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.max_retries)),
            wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        )

    def _default_timeout(self) -> float:
        provider = self.provider_instance
        if provider is not None:
            configured = self.context.provider_settings(provider).request_timeout
            if configured:
                return configured
        return self.context.settings.request_timeout

    def _telemetry_payload(self) -> dict[str, Any]:
        return {
            "provider": self._provider,
            "model": self.model,
            "timestamp": time.time(),
        }

    def __repr__(self) -> str:
        return (
            f"CallRequest(provider={self._provider!r}, model={self._requested_model!r}, "
            f"capability={to_detailed_string(self._declared_capability)!r}, "
            f"interactions={len(self._body.interactions)})"
        )


def _joined_text(interactions) -> str:
    return "\n".join(item.content for item in interactions if isinstance(item, TextInteraction) and item.content)


def _is_complete_text(delta: CallResult) -> bool:
    """A finished delta whose last new interaction is non-empty text."""
    if delta.status is not CallStatus.FINISHED:
        return False
    new_items = delta.body.new_interactions()
    if not new_items:
        return False
    last = new_items[-1]
    return isinstance(last, TextInteraction) and bool(last.content)
