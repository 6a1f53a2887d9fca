"""Request and response policies applied around every provider call.

Policies normalize a request before validation (tool filter, timeout,
context injection) and post-process a result after the call (finish
reason, JSON output). A failing policy never aborts the call: its error is
logged and attached to the request or result as a Warning.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .body import ConversationBody
from .builder import BodyBuilder
from .filters import EXCLUDE_ALL, canonicalize_filter
from .interactions import Agent, ErrorInteraction, TextInteraction
from .messages import MessageOrigin, RuntimeMessage
from .validation import validate_json_output

if TYPE_CHECKING:
    from .request import CallRequest
    from .result import CallResult

__all__ = [
    "PolicyContext",
    "RequestPolicy",
    "ResponsePolicy",
    "PolicyPipeline",
    "ToolFilterNormalizationPolicy",
    "RequestTimeoutPolicy",
    "ContextInjectionPolicy",
    "FinishReasonNormalizePolicy",
    "JsonOutputValidationPolicy",
    "normalize_finish_reason",
    "DEFAULT_TIMEOUT_SECONDS",
    "MIN_TIMEOUT_SECONDS",
    "MAX_TIMEOUT_SECONDS",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 600


@dataclass(slots=True)
class PolicyContext:
    request: CallRequest
    response: CallResult | None = None


@runtime_checkable
class RequestPolicy(Protocol):
    async def apply(self, context: PolicyContext) -> None:
        ...


@runtime_checkable
class ResponsePolicy(Protocol):
    async def apply(self, context: PolicyContext) -> None:
        ...


def _diagnostic_turn_id(body: ConversationBody) -> str:
    return body.last_turn_id() or uuid.uuid4().hex


def _with_diagnostic(body: ConversationBody, text: str) -> ConversationBody:
    """Append a UI-only diagnostic; providers skip error interactions when encoding."""
    return BodyBuilder.from_body(body).add_error(text, turn_id=_diagnostic_turn_id(body)).build()


# -----------------------------------------------------------------------------
# Request policies
# -----------------------------------------------------------------------------


class ToolFilterNormalizationPolicy:
    """Rewrite the body's tool filter into its canonical form."""

    async def apply(self, context: PolicyContext) -> None:
        request = context.request
        body = request.body
        raw = body.tool_filter
        normalized = canonicalize_filter(raw)
        if raw == normalized:
            return
        updated = body.with_tool_filter(normalized)
        if not (raw or "").strip():
            note = f"Tool filter was empty; interpreted as '{normalized}'."
        else:
            note = f"Tool filter normalized from '{raw}' to '{normalized}'."
        request.body = _with_diagnostic(updated, note)
        LOGGER.debug(note)


class RequestTimeoutPolicy:
    """Apply the default timeout and clamp it into the supported range."""

    def __init__(
        self,
        *,
        default: int = DEFAULT_TIMEOUT_SECONDS,
        minimum: int = MIN_TIMEOUT_SECONDS,
        maximum: int = MAX_TIMEOUT_SECONDS,
    ) -> None:
        self._default = default
        self._minimum = minimum
        self._maximum = maximum

    async def apply(self, context: PolicyContext) -> None:
        request = context.request
        original = request.timeout_seconds
        if original is None or original <= 0:
            request.timeout_seconds = self._default
            note = f"Timeout applied: {self._default}s (default)"
        elif original < self._minimum:
            request.timeout_seconds = self._minimum
            note = f"Timeout increased from {original}s to {self._minimum}s (minimum)"
        elif original > self._maximum:
            request.timeout_seconds = self._maximum
            note = f"Timeout reduced from {original}s to {self._maximum}s (maximum)"
        else:
            return
        if not request.body.is_empty:
            request.body = _with_diagnostic(request.body, note)
        LOGGER.debug(note)


class ContextInjectionPolicy:
    """Place a Context-agent summary of the selected context providers first."""

    async def apply(self, context: PolicyContext) -> None:
        request = context.request
        body = request.body
        context_filter = (body.context_filter or "").strip()
        if not context_filter or context_filter == EXCLUDE_ALL:
            return
        values = request.context.collect_context(context_filter)
        if not values:
            return

        lines = ["Conversation context:", ""]
        lines.extend(f"- {key}: {value}" for key, value in values.items())
        injected = TextInteraction(
            content="\n".join(lines) + "\n",
            agent=Agent.CONTEXT,
            turn_id=_diagnostic_turn_id(body),
        )

        new_indices = set(body.interactions_new)
        builder = (
            BodyBuilder.for_history()
            .with_tool_filter(body.tool_filter)
            .with_context_filter(body.context_filter)
            .with_json_output_schema(body.json_output_schema)
            .add(injected)
        )
        for index, interaction in enumerate(body.interactions):
            if interaction.agent is Agent.CONTEXT:
                continue
            builder.add(interaction, mark_new=index in new_indices)
        request.body = builder.build()
        LOGGER.debug("Injected %d context value(s)", len(values))


# -----------------------------------------------------------------------------
# Response policies
# -----------------------------------------------------------------------------

_FINISH_REASONS = {
    "stop": "stop",
    "stopped": "stop",
    "completed": "stop",
    "end": "stop",
    "eos": "stop",
    "stop_sequence": "stop",
    "end_turn": "stop",
    "length": "length",
    "max_tokens": "length",
    "max_token": "length",
    "max_tokens_exceeded": "length",
    "content_length": "length",
    "length_finish": "length",
    "timeout": "timeout",
    "time_out": "timeout",
    "deadline_exceeded": "timeout",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "cancel": "cancelled",
    "user_cancelled": "cancelled",
    "aborted": "cancelled",
    "abort": "cancelled",
    "tool_call": "tool_calls",
    "tool_calls": "tool_calls",
    "tool_use": "tool_calls",
    "function_call": "tool_calls",
    "function_calls": "tool_calls",
    "content_filter": "content_filter",
    "safety": "content_filter",
    "filtered": "content_filter",
    "error": "error",
    "failed": "error",
}


def normalize_finish_reason(value: str | None) -> tuple[str | None, bool]:
    """Map a provider finish reason onto the shared vocabulary.

    Returns:
        ``(normalized, known)``. Unknown values are returned trimmed with
        ``known`` set to False; empty input yields ``(None, False)``.
    """
    if value is None or not value.strip():
        return None, False
    original = value.strip()
    key = original.lower().replace("-", "_").replace(" ", "_")
    mapped = _FINISH_REASONS.get(key)
    if mapped is None:
        return original, False
    return mapped, True


class FinishReasonNormalizePolicy:
    """Ensure the result carries a normalized finish reason."""

    async def apply(self, context: PolicyContext) -> None:
        response = context.response
        if response is None or response.body.is_empty:
            return
        last = response.body.interactions[-1]
        if isinstance(last, ErrorInteraction):
            return

        original = response.metrics.finish_reason
        normalized, known = normalize_finish_reason(original)
        if normalized is None:
            normalized = "stop"
            response.add_message(
                RuntimeMessage.warning(MessageOrigin.RETURN, "Finish reason missing; defaulted to 'stop'.")
            )
        elif not known:
            response.add_message(
                RuntimeMessage.warning(
                    MessageOrigin.RETURN,
                    f"Unrecognized finish reason '{original}'. Keeping original value.",
                )
            )
        elif normalized != original:
            response.add_message(
                RuntimeMessage.info(MessageOrigin.RETURN, f"Normalized finish reason '{original}' -> '{normalized}'.")
            )

        if last.metrics.finish_reason == normalized:
            return
        updated = last.with_metrics(replace(last.metrics, finish_reason=normalized))
        body = response.body
        response.set_body(body.with_interactions(body.interactions[:-1] + (updated,), body.interactions_new))


class JsonOutputValidationPolicy:
    """Warn when a JSON-output answer does not match the requested schema."""

    async def apply(self, context: PolicyContext) -> None:
        response = context.response
        request = context.request
        if response is None or not request.body.requires_json_output:
            return
        text = response.body.last_text(Agent.ASSISTANT)
        if text is None:
            return
        for message in validate_json_output(text.content, request.body.json_output_schema):
            response.add_message(message)


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class PolicyPipeline:
    """Ordered request and response policies."""

    request_policies: list[RequestPolicy] = field(default_factory=list)
    response_policies: list[ResponsePolicy] = field(default_factory=list)

    @classmethod
    def default(cls) -> PolicyPipeline:
        return cls(
            request_policies=[
                ToolFilterNormalizationPolicy(),
                RequestTimeoutPolicy(),
                ContextInjectionPolicy(),
            ],
            response_policies=[
                FinishReasonNormalizePolicy(),
                JsonOutputValidationPolicy(),
            ],
        )

    async def apply_request(self, request: CallRequest) -> None:
        context = PolicyContext(request=request)
        for policy in self.request_policies:
            try:
                await policy.apply(context)
            except Exception as exc:
                name = type(policy).__name__
                LOGGER.warning("Request policy %s failed", name, exc_info=True)
                request.add_message(
                    RuntimeMessage.warning(MessageOrigin.REQUEST, f"Request policy {name} failed: {exc}")
                )

    async def apply_response(self, response: CallResult, request: CallRequest) -> None:
        context = PolicyContext(request=request, response=response)
        for policy in self.response_policies:
            try:
                await policy.apply(context)
            except Exception as exc:
                name = type(policy).__name__
                LOGGER.warning("Response policy %s failed", name, exc_info=True)
                response.add_message(
                    RuntimeMessage.warning(MessageOrigin.RETURN, f"Response policy {name} failed: {exc}")
                )
