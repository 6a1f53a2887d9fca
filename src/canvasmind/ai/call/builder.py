"""Fluent builder producing :class:`ConversationBody` snapshots."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Mapping, Sequence

from .body import DEFAULT_FILTER, ConversationBody
from .interactions import (
    Agent,
    ErrorInteraction,
    ImageInteraction,
    Interaction,
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
)
from .messages import RuntimeMessage
from .metrics import Metrics

__all__ = ["BodyBuilder"]

LOGGER = logging.getLogger(__name__)


class BodyBuilder:
    """Stateful builder for one body-construction session.

    Every mutating call takes an optional ``mark_new`` flag. When omitted the
    builder's policy applies: builders made with :meth:`create` mark appended
    items as new (live calls), builders made with :meth:`for_history` or
    ``from_body(..., history=True)`` do not (replaying persisted history).

    Example:
        body = (
            BodyBuilder.create()
            .with_default_turn_id("turn-1")
            .add_system("You are helpful.")
            .add_user("Place a slider")
            .build()
        )
    """

    def __init__(self, *, mark_new_by_default: bool = True) -> None:
        self._interactions: list[Interaction] = []
        self._new: list[int] = []
        self._tool_filter = DEFAULT_FILTER
        self._context_filter = DEFAULT_FILTER
        self._json_output_schema: str | None = None
        self._default_turn_id: str | None = None
        self._mark_new_by_default = mark_new_by_default

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(cls) -> BodyBuilder:
        return cls(mark_new_by_default=True)

    @classmethod
    def for_history(cls) -> BodyBuilder:
        return cls(mark_new_by_default=False)

    @classmethod
    def from_body(cls, body: ConversationBody, *, history: bool = False) -> BodyBuilder:
        """Start from an existing snapshot, preserving its new markers."""
        builder = cls(mark_new_by_default=not history)
        builder._interactions = list(body.interactions)
        builder._new = list(body.interactions_new)
        builder._tool_filter = body.tool_filter
        builder._context_filter = body.context_filter
        builder._json_output_schema = body.json_output_schema
        return builder

    @property
    def count(self) -> int:
        return len(self._interactions)

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def with_tool_filter(self, tool_filter: str | None) -> BodyBuilder:
        self._tool_filter = tool_filter if tool_filter is not None else DEFAULT_FILTER
        return self

    def with_context_filter(self, context_filter: str | None) -> BodyBuilder:
        self._context_filter = context_filter if context_filter is not None else DEFAULT_FILTER
        return self

    def with_json_output_schema(self, schema: str | None) -> BodyBuilder:
        """Set the JSON output schema; ``None`` keeps the current value."""
        if schema is not None:
            self._json_output_schema = schema
        return self

    def with_default_turn_id(self, turn_id: str | None) -> BodyBuilder:
        self._default_turn_id = turn_id or None
        return self

    # ------------------------------------------------------------------
    # Appending and replacing
    # ------------------------------------------------------------------

    def add(self, interaction: Interaction | None, *, mark_new: bool | None = None) -> BodyBuilder:
        if interaction is None:
            return self
        self._interactions.append(interaction)
        if self._should_mark(mark_new):
            self._new.append(len(self._interactions) - 1)
        return self

    def add_range(self, interactions: Iterable[Interaction | None], *, mark_new: bool | None = None) -> BodyBuilder:
        for interaction in interactions:
            self.add(interaction, mark_new=mark_new)
        return self

    def replace_last(self, interaction: Interaction | None, *, mark_new: bool | None = None) -> BodyBuilder:
        """Replace the trailing interaction; behaves as :meth:`add` when empty."""
        if interaction is None:
            return self
        if not self._interactions:
            return self.add(interaction, mark_new=mark_new)
        index = len(self._interactions) - 1
        self._interactions[index] = interaction
        if self._should_mark(mark_new) and index not in self._new:
            self._new.append(index)
        return self

    def replace_last_range(self, interactions: Sequence[Interaction | None], *, mark_new: bool | None = None) -> BodyBuilder:
        """Replace the trailing ``len(interactions)`` items with *interactions*.

        When at least as many items are given as the builder holds, the
        builder is reset and rebuilt from them.
        """
        items = [item for item in interactions if item is not None]
        if not items:
            return self
        if len(items) >= len(self._interactions):
            self._interactions.clear()
            self._new.clear()
            return self.add_range(items, mark_new=mark_new)
        start = len(self._interactions) - len(items)
        del self._interactions[start:]
        self._new = [index for index in self._new if index < start]
        return self.add_range(items, mark_new=mark_new)

    # ------------------------------------------------------------------
    # Convenience adders
    # ------------------------------------------------------------------

    def add_text(
        self,
        agent: Agent,
        content: str,
        *,
        reasoning: str | None = None,
        metrics: Metrics | None = None,
        turn_id: str | None = None,
        mark_new: bool | None = None,
    ) -> BodyBuilder:
        interaction = TextInteraction(
            content=content,
            reasoning=reasoning,
            agent=agent,
            turn_id=self._turn_id(turn_id),
            metrics=metrics or Metrics(),
        )
        return self.add(interaction, mark_new=mark_new)

    def add_system(self, content: str, **kwargs: Any) -> BodyBuilder:
        return self.add_text(Agent.SYSTEM, content, **kwargs)

    def add_user(self, content: str, **kwargs: Any) -> BodyBuilder:
        return self.add_text(Agent.USER, content, **kwargs)

    def add_assistant(self, content: str, **kwargs: Any) -> BodyBuilder:
        return self.add_text(Agent.ASSISTANT, content, **kwargs)

    def add_tool_call(
        self,
        call_id: str,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        turn_id: str | None = None,
        mark_new: bool | None = None,
    ) -> BodyBuilder:
        interaction = ToolCallInteraction(
            id=call_id,
            name=name,
            arguments=dict(arguments) if arguments is not None else None,
            turn_id=self._turn_id(turn_id),
        )
        return self.add(interaction, mark_new=mark_new)

    def add_tool_result(
        self,
        call_id: str,
        name: str,
        result: Mapping[str, Any],
        *,
        messages: Iterable[RuntimeMessage] = (),
        turn_id: str | None = None,
        mark_new: bool | None = None,
    ) -> BodyBuilder:
        interaction = ToolResultInteraction(
            id=call_id,
            name=name,
            result=dict(result),
            messages=tuple(messages),
            turn_id=self._turn_id(turn_id),
        )
        return self.add(interaction, mark_new=mark_new)

    def add_error(self, content: str, *, turn_id: str | None = None, mark_new: bool | None = None) -> BodyBuilder:
        return self.add(ErrorInteraction(content=content, turn_id=self._turn_id(turn_id)), mark_new=mark_new)

    def add_image_request(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "standard",
        style: str = "vivid",
        turn_id: str | None = None,
        mark_new: bool | None = None,
    ) -> BodyBuilder:
        interaction = ImageInteraction(
            original_prompt=prompt,
            size=size,
            quality=quality,
            style=style,
            agent=Agent.USER,
            turn_id=self._turn_id(turn_id),
        )
        return self.add(interaction, mark_new=mark_new)

    # ------------------------------------------------------------------
    # Session-level edits
    # ------------------------------------------------------------------

    def ensure_turn_id(self) -> BodyBuilder:
        """Give every interaction without a turn id the default (or a fresh) id."""
        for index, interaction in enumerate(self._interactions):
            if interaction.turn_id:
                continue
            turn_id = self._default_turn_id or uuid.uuid4().hex
            self._interactions[index] = interaction.with_turn_id(turn_id)
        return self

    def set_completion_time(self, seconds: float) -> BodyBuilder:
        if not self._interactions:
            return self
        last = self._interactions[-1]
        self._interactions[-1] = last.with_metrics(last.metrics.with_completion_time(seconds))
        return self

    def clear_new_markers(self) -> BodyBuilder:
        self._new.clear()
        return self

    def build(self) -> ConversationBody:
        body = ConversationBody(
            interactions=tuple(self._interactions),
            tool_filter=self._tool_filter,
            context_filter=self._context_filter,
            json_output_schema=self._json_output_schema,
            interactions_new=tuple(self._new),
        )
        LOGGER.debug(
            "Built conversation body: %d interaction(s), new=%s",
            len(body.interactions),
            list(body.interactions_new),
        )
        return body

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _should_mark(self, mark_new: bool | None) -> bool:
        return self._mark_new_by_default if mark_new is None else mark_new

    def _turn_id(self, explicit: str | None) -> str:
        return explicit or self._default_turn_id or ""
