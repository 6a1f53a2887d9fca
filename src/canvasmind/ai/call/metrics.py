"""Per-interaction usage metrics.

Metrics are immutable; :meth:`Metrics.combine` returns a new record so the
same metrics can be folded repeatedly without double counting.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping

from ..utils.tokens import TokenCounterRegistry
from .messages import MessageCode, MessageOrigin, RuntimeMessage
from .models import ModelCapabilityRegistryProtocol

__all__ = ["Metrics", "combine_all"]


@dataclass(slots=True, frozen=True)
class Metrics:
    """Token, timing and provenance counters for one or more calls.

    Attributes:
        input_tokens_cached: Prompt tokens served from the provider cache.
        input_tokens_prompt: Uncached prompt tokens.
        output_tokens_reasoning: Hidden reasoning tokens.
        output_tokens_generation: Visible generated tokens.
        estimated_input_tokens: Heuristic input estimate when usage is unreported.
        estimated_output_tokens: Heuristic output estimate.
        completion_time: Wall time in seconds.
        provider: Provider that produced the call.
        model: Model that produced the call.
        finish_reason: Normalized finish reason.
        last_effective_total_tokens: Effective total of the most recent call,
            used for context-window usage after folding.
    """

    input_tokens_cached: int = 0
    input_tokens_prompt: int = 0
    output_tokens_reasoning: int = 0
    output_tokens_generation: int = 0
    estimated_input_tokens: int = 0
    estimated_output_tokens: int = 0
    completion_time: float = 0.0
    provider: str | None = None
    model: str | None = None
    finish_reason: str | None = None
    last_effective_total_tokens: int = 0

    # ------------------------------------------------------------------
    # Derived counters
    # ------------------------------------------------------------------

    @property
    def input_tokens(self) -> int:
        return self.input_tokens_cached + self.input_tokens_prompt

    @property
    def output_tokens(self) -> int:
        return self.output_tokens_reasoning + self.output_tokens_generation

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_estimated_tokens(self) -> int:
        return self.estimated_input_tokens + self.estimated_output_tokens

    @property
    def effective_total_tokens(self) -> int:
        """Reported total, or the estimate when it is larger."""
        return max(self.total_tokens, self.total_estimated_tokens)

    def context_usage_percent(self, registry: ModelCapabilityRegistryProtocol | None) -> float | None:
        """Return the fraction of the model's context window in use.

        Args:
            registry: Registry providing the model's context limit.

        Returns:
            A ratio rounded to four decimals, or ``None`` when the provider,
            model or context limit is unknown.
        """
        if registry is None or not self.provider or not self.model:
            return None
        limit = registry.get_context_limit(self.provider, self.model)
        if limit is None or limit <= 0:
            return None
        tokens = self.last_effective_total_tokens if self.last_effective_total_tokens > 0 else self.effective_total_tokens
        return round(tokens / limit, 4)

    # ------------------------------------------------------------------
    # Combination
    # ------------------------------------------------------------------

    def combine(self, other: Metrics | None) -> Metrics:
        """Return a new record adding *other* to this one.

        Counters and completion time are summed. Provider, model and finish
        reason take the value of *other* when it has one.
        """
        if other is None:
            return self
        last_effective = other.last_effective_total_tokens or other.effective_total_tokens
        return Metrics(
            input_tokens_cached=self.input_tokens_cached + other.input_tokens_cached,
            input_tokens_prompt=self.input_tokens_prompt + other.input_tokens_prompt,
            output_tokens_reasoning=self.output_tokens_reasoning + other.output_tokens_reasoning,
            output_tokens_generation=self.output_tokens_generation + other.output_tokens_generation,
            estimated_input_tokens=self.estimated_input_tokens + other.estimated_input_tokens,
            estimated_output_tokens=self.estimated_output_tokens + other.estimated_output_tokens,
            completion_time=self.completion_time + other.completion_time,
            provider=other.provider if other.provider is not None else self.provider,
            model=other.model if other.model is not None else self.model,
            finish_reason=other.finish_reason if other.finish_reason is not None else self.finish_reason,
            last_effective_total_tokens=last_effective or self.last_effective_total_tokens,
        )

    def with_provenance(self, provider: str | None, model: str | None) -> Metrics:
        return replace(self, provider=provider, model=model)

    def with_completion_time(self, seconds: float) -> Metrics:
        return replace(self, completion_time=float(seconds))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_valid(self) -> tuple[bool, tuple[RuntimeMessage, ...]]:
        """Check that the record is complete enough to report.

        Returns:
            ``(ok, messages)``; messages are not meant for end users.
        """
        messages: list[RuntimeMessage] = []

        def fail(text: str) -> None:
            messages.append(
                RuntimeMessage.error(MessageOrigin.RETURN, text, MessageCode.RETURN_INVALID, surfaceable=False)
            )

        if not self.provider:
            fail("Metrics provider is required")
        if not self.model:
            fail("Metrics model is required")
        counters = (
            self.input_tokens_cached,
            self.input_tokens_prompt,
            self.output_tokens_reasoning,
            self.output_tokens_generation,
            self.estimated_input_tokens,
            self.estimated_output_tokens,
        )
        if any(value < 0 for value in counters):
            fail("Metrics token counts must be non-negative")
        if not self.finish_reason:
            fail("Metrics finish reason is required")
        if self.completion_time < 0:
            fail("Metrics completion time must be non-negative")
        return (not messages, tuple(messages))

    # ------------------------------------------------------------------
    # Estimation and serialization
    # ------------------------------------------------------------------

    @classmethod
    def estimate(
        cls,
        input_text: str,
        output_text: str = "",
        *,
        model: str | None = None,
        registry: TokenCounterRegistry | None = None,
    ) -> Metrics:
        """Build a record carrying heuristic token estimates only."""
        counters = registry or TokenCounterRegistry.global_instance()
        return cls(
            estimated_input_tokens=counters.count(model, input_text) if input_text else 0,
            estimated_output_tokens=counters.count(model, output_text) if output_text else 0,
            model=model,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_tokens_cached": self.input_tokens_cached,
            "input_tokens_prompt": self.input_tokens_prompt,
            "output_tokens_reasoning": self.output_tokens_reasoning,
            "output_tokens_generation": self.output_tokens_generation,
            "estimated_input_tokens": self.estimated_input_tokens,
            "estimated_output_tokens": self.estimated_output_tokens,
            "completion_time": self.completion_time,
            "provider": self.provider,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "last_effective_total_tokens": self.last_effective_total_tokens,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Metrics:
        if not payload:
            return cls()
        return cls(
            input_tokens_cached=int(payload.get("input_tokens_cached", 0)),
            input_tokens_prompt=int(payload.get("input_tokens_prompt", 0)),
            output_tokens_reasoning=int(payload.get("output_tokens_reasoning", 0)),
            output_tokens_generation=int(payload.get("output_tokens_generation", 0)),
            estimated_input_tokens=int(payload.get("estimated_input_tokens", 0)),
            estimated_output_tokens=int(payload.get("estimated_output_tokens", 0)),
            completion_time=float(payload.get("completion_time", 0.0)),
            provider=payload.get("provider"),
            model=payload.get("model"),
            finish_reason=payload.get("finish_reason"),
            last_effective_total_tokens=int(payload.get("last_effective_total_tokens", 0)),
        )


def combine_all(metrics: Iterable[Metrics | None]) -> Metrics:
    """Fold a sequence of records into one."""
    total = Metrics()
    for item in metrics:
        total = total.combine(item)
    return total
