"""Uniform outcome of provider calls and tool invocations.

Failures never escape as exceptions across component boundaries; they are
represented by a finished :class:`CallResult` whose body holds an
:class:`~canvasmind.ai.call.interactions.ErrorInteraction` and whose
messages carry an Error-severity diagnostic tagged with its origin.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from .body import ConversationBody
from .builder import BodyBuilder
from .interactions import Interaction, interaction_to_dict
from .messages import MessageCode, MessageOrigin, RuntimeMessage, has_errors, merge_messages
from .metrics import Metrics

if TYPE_CHECKING:
    from .request import CallRequest
    from .tool_request import ToolInvocationRequest

    AnyRequest = CallRequest | ToolInvocationRequest

__all__ = ["CallStatus", "CallResult", "UNKNOWN_PROVENANCE", "DEFAULT_RESULT_FIELDS"]

LOGGER = logging.getLogger(__name__)

UNKNOWN_PROVENANCE = "Unknown"

DEFAULT_RESULT_FIELDS: Mapping[str, str] = {
    "success": "success",
    "result": "result",
    "messages": "messages",
}


class CallStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    STREAMING = "streaming"
    CALLING_TOOLS = "calling_tools"
    FINISHED = "finished"


def _stamp(interactions: Iterable[Interaction], request: AnyRequest | None) -> list[Interaction]:
    provider = (request.provider if request is not None else None) or UNKNOWN_PROVENANCE
    model = (request.model if request is not None else None) or UNKNOWN_PROVENANCE
    return [item.with_metrics(item.metrics.with_provenance(provider, model)) for item in interactions]


@dataclass(slots=True)
class CallResult:
    """Outcome of a call.

    Attributes:
        body: Conversation produced by the call.
        request: Request that produced this result.
        status: Lifecycle status.
        raw: Undecoded provider payload, when the result was built from one.
    """

    body: ConversationBody = field(default_factory=ConversationBody)
    request: AnyRequest | None = None
    status: CallStatus = CallStatus.IDLE
    raw: Any = None
    _messages: list[RuntimeMessage] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def create_success(
        cls,
        body: ConversationBody | Sequence[Interaction],
        request: AnyRequest | None = None,
    ) -> CallResult:
        """Finished result whose interactions are stamped with the request's provider and model."""
        if isinstance(body, ConversationBody):
            stamped = _stamp(body.interactions, request)
            final = BodyBuilder.from_body(body).replace_last_range(stamped).build()
        else:
            final = BodyBuilder.create().add_range(_stamp(body, request)).build()
        result = cls(body=final, request=request, status=CallStatus.FINISHED)
        LOGGER.debug(
            "Created success result: interactions=%d, new=%s",
            len(final.interactions),
            list(final.interactions_new),
        )
        return result

    @classmethod
    def create_success_raw(cls, raw: Any, request: AnyRequest) -> CallResult:
        """Finished result decoded from a raw provider payload."""
        result = cls(request=request, status=CallStatus.FINISHED)
        result.set_body_raw(raw)
        return result

    @classmethod
    def create_error(cls, message: str, request: AnyRequest | None = None, metrics: Metrics | None = None) -> CallResult:
        return cls._failure(message, MessageOrigin.RETURN, message, request, metrics=metrics)

    @classmethod
    def create_provider_error(
        cls,
        raw_message: str,
        request: AnyRequest | None = None,
        *,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> CallResult:
        return cls._failure(raw_message, MessageOrigin.PROVIDER, f"Provider error: {raw_message}", request, code=code)

    @classmethod
    def create_network_error(
        cls,
        raw_message: str,
        request: AnyRequest | None = None,
        *,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> CallResult:
        return cls._failure(raw_message, MessageOrigin.NETWORK, f"Network error: {raw_message}", request, code=code)

    @classmethod
    def create_tool_error(
        cls,
        raw_message: str,
        request: AnyRequest | None = None,
        *,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> CallResult:
        return cls._failure(raw_message, MessageOrigin.TOOL, f"Tool error: {raw_message}", request, code=code)

    @classmethod
    def _failure(
        cls,
        raw_message: str,
        origin: MessageOrigin,
        text: str,
        request: AnyRequest | None,
        *,
        code: MessageCode = MessageCode.UNKNOWN,
        metrics: Metrics | None = None,
    ) -> CallResult:
        turn_id = request.body.last_turn_id() if request is not None else ""
        body = BodyBuilder.create().add_error(raw_message, turn_id=turn_id or uuid.uuid4().hex).build()
        if metrics is not None:
            body = BodyBuilder.from_body(body).replace_last(body.interactions[-1].with_metrics(metrics)).build()
        result = cls(body=body, request=request, status=CallStatus.FINISHED)
        result.add_message(RuntimeMessage.error(origin, text, code))
        LOGGER.debug("Created %s error result: %s", origin.value, raw_message)
        return result

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def metrics(self) -> Metrics:
        return self.body.metrics

    @property
    def messages(self) -> tuple[RuntimeMessage, ...]:
        """Private, body, request and result diagnostics, de-duplicated and ranked."""
        request_messages = self.request.messages if self.request is not None else ()
        _, own = self.is_valid()
        return merge_messages(self._messages, self.body.messages, request_messages, own)

    @property
    def success(self) -> bool:
        return not has_errors(self.messages)

    @property
    def result_text(self) -> str | None:
        """Content of the last text interaction, if any."""
        text = self.body.last_text()
        return text.content if text is not None else None

    def is_valid(self) -> tuple[bool, tuple[RuntimeMessage, ...]]:
        errors: list[RuntimeMessage] = []
        if self.request is None:
            errors.append(RuntimeMessage.error(MessageOrigin.RETURN, "Request must not be null", MessageCode.RETURN_INVALID))
        skip_metrics = self.request is not None and self.request.skip_metrics_validation
        if not skip_metrics:
            _, metric_errors = self.metrics.is_valid()
            errors.extend(metric_errors)
        if self.body.is_empty and not self._messages:
            errors.append(
                RuntimeMessage.error(MessageOrigin.RETURN, "Either body or messages must be set", MessageCode.RETURN_INVALID)
            )
        return (not errors, tuple(errors))

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_message(self, message: RuntimeMessage) -> None:
        self._messages.append(message)

    def merge_runtime_messages_from(self, other: CallResult | None, origin: MessageOrigin | None = None) -> None:
        """Copy *other*'s diagnostics, optionally re-tagging their origin."""
        if other is None:
            return
        for message in other.messages:
            self._messages.append(message.with_origin(origin) if origin is not None else message)

    def set_body(self, body: ConversationBody | Sequence[Interaction]) -> None:
        if isinstance(body, ConversationBody):
            self.body = body
        else:
            self.body = BodyBuilder.create().add_range(body).build()

    def set_body_raw(self, raw: Any) -> None:
        """Decode *raw* through the request's provider and store the stamped body.

        Raises:
            ValueError: If the result has no request, or the request has no provider instance.
        """
        if self.request is None:
            raise ValueError("Request is required for decoding a raw response")
        provider = self.request.provider_instance
        if provider is None:
            raise ValueError("Request has no provider instance for decoding a raw response")
        self.raw = raw
        interactions = provider.decode(raw, self.request)
        self.body = BodyBuilder.create().add_range(_stamp(interactions, self.request)).build()
        LOGGER.debug("Decoded raw response into %d interaction(s)", len(self.body.interactions))

    def append_interactions(self, interactions: Iterable[Interaction]) -> None:
        """Append *interactions* as new, keeping items already marked new."""
        self.body = BodyBuilder.from_body(self.body).add_range(interactions, mark_new=True).build()

    def set_completion_time(self, seconds: float) -> None:
        self.body = BodyBuilder.from_body(self.body).set_completion_time(seconds).build()

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self, fields: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Project selected values into a JSON-compatible dict.

        Args:
            fields: Mapping of output key to source path. Supported paths are
                ``success``, ``result``, ``messages``, ``status``, ``body``,
                ``metrics``, ``metrics.<name>`` and ``request.<name>``.
                Unknown paths map to ``None``.
        """
        selected = fields or DEFAULT_RESULT_FIELDS
        return {key: self._resolve_path(path) for key, path in selected.items()}

    def _resolve_path(self, path: str) -> Any:
        normalized = path.strip().lower()
        if normalized == "success":
            return self.success
        if normalized == "result":
            return self._result_payload()
        if normalized == "messages":
            return [message.to_dict() for message in self.messages]
        if normalized == "status":
            return self.status.value
        if normalized == "body":
            return self.body.to_dict()
        if normalized == "metrics":
            return self.metrics.to_dict()
        if normalized.startswith("metrics."):
            return self._metrics_field(normalized[len("metrics."):])
        if normalized.startswith("request.") and self.request is not None:
            return self.request.describe().get(normalized[len("request."):])
        return None

    def _metrics_field(self, name: str) -> Any:
        metrics = self.metrics
        derived = {
            "input_tokens": metrics.input_tokens,
            "output_tokens": metrics.output_tokens,
            "total_tokens": metrics.total_tokens,
            "effective_total_tokens": metrics.effective_total_tokens,
        }
        if name in derived:
            return derived[name]
        return metrics.to_dict().get(name)

    def _result_payload(self) -> Any:
        if self.raw is not None:
            return self.raw
        new_items = self.body.new_interactions() or list(self.body.interactions[-1:])
        if len(new_items) == 1:
            return interaction_to_dict(new_items[0])
        return [interaction_to_dict(item) for item in new_items]
