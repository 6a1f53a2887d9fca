"""Immutable conversation body snapshots.

A :class:`ConversationBody` is the replayable, hashable history sent to a
provider. Bodies are never edited in place; use
:class:`~canvasmind.ai.call.builder.BodyBuilder` or the ``with_appended``
helpers to derive a new snapshot.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Sequence

from .interactions import (
    Agent,
    ErrorInteraction,
    ImageInteraction,
    Interaction,
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
    canonical_json,
    interaction_from_dict,
    interaction_to_dict,
)
from .messages import RuntimeMessage
from .metrics import Metrics, combine_all

__all__ = ["ConversationBody", "DEFAULT_FILTER"]

LOGGER = logging.getLogger(__name__)

# Exclude-all filter; a body offers no tools and no context unless told to.
DEFAULT_FILTER = "-*"


@dataclass(slots=True, frozen=True)
class ConversationBody:
    """Ordered interactions plus the policies that travel with them.

    Attributes:
        interactions: Interactions in insertion order.
        tool_filter: Filter expression selecting the tools offered to the model.
        context_filter: Filter expression selecting injected context providers.
        json_output_schema: JSON schema the response must follow, if any.
        interactions_new: Indices of interactions produced by the current call.
    """

    interactions: tuple[Interaction, ...] = ()
    tool_filter: str = DEFAULT_FILTER
    context_filter: str = DEFAULT_FILTER
    json_output_schema: str | None = None
    interactions_new: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.interactions, tuple):
            object.__setattr__(self, "interactions", tuple(self.interactions))
        count = len(self.interactions)
        normalized = sorted({index for index in self.interactions_new if 0 <= index < count})
        object.__setattr__(self, "interactions_new", tuple(normalized))

    @classmethod
    def empty(cls) -> ConversationBody:
        return cls()

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def requires_json_output(self) -> bool:
        return bool(self.json_output_schema and self.json_output_schema.strip())

    @property
    def metrics(self) -> Metrics:
        """Fold of every interaction's metrics."""
        return combine_all(interaction.metrics for interaction in self.interactions)

    @property
    def messages(self) -> tuple[RuntimeMessage, ...]:
        """Diagnostics carried by tool results and images, de-duplicated by text."""
        seen: set[str] = set()
        collected: list[RuntimeMessage] = []
        for interaction in self.interactions:
            if not isinstance(interaction, (ToolResultInteraction, ImageInteraction)):
                continue
            for message in interaction.messages:
                if message.text in seen:
                    continue
                seen.add(message.text)
                collected.append(message)
        return tuple(collected)

    @property
    def is_empty(self) -> bool:
        return not self.interactions

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def last_turn_id(self) -> str:
        """Turn id of the most recent interaction that has one, or ``""``."""
        for interaction in reversed(self.interactions):
            if interaction.turn_id:
                return interaction.turn_id
        return ""

    def turn_ids_valid(self) -> bool:
        """Return True when every interaction carries a non-empty turn id."""
        return all(bool(interaction.turn_id) for interaction in self.interactions)

    def pending_tool_calls(self) -> list[ToolCallInteraction]:
        """Tool calls without a tool result carrying the same id."""
        answered = {
            interaction.id
            for interaction in self.interactions
            if isinstance(interaction, ToolResultInteraction) and interaction.id
        }
        return [
            interaction
            for interaction in self.interactions
            if isinstance(interaction, ToolCallInteraction)
            and interaction.id
            and interaction.id not in answered
        ]

    def pending_tool_calls_count(self) -> int:
        return len(self.pending_tool_calls())

    def last_interaction(self, agent: Agent | None = None) -> Interaction | None:
        for interaction in reversed(self.interactions):
            if agent is None or interaction.agent is agent:
                return interaction
        return None

    def last_text(self, agent: Agent | None = None) -> TextInteraction | None:
        for interaction in reversed(self.interactions):
            if isinstance(interaction, TextInteraction) and (agent is None or interaction.agent is agent):
                return interaction
        return None

    def new_interactions(self) -> list[Interaction]:
        return [self.interactions[index] for index in self.interactions_new]

    def errors(self) -> list[ErrorInteraction]:
        return [item for item in self.interactions if isinstance(item, ErrorInteraction)]

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_appended(self, interaction: Interaction) -> ConversationBody:
        """Return a new body with *interaction* appended and marked as the only new item."""
        return self.with_appended_range((interaction,))

    def with_appended_range(self, interactions: Iterable[Interaction | None]) -> ConversationBody:
        items = [item for item in interactions if item is not None]
        if not items:
            return replace(self, interactions_new=())
        start = len(self.interactions)
        return replace(
            self,
            interactions=self.interactions + tuple(items),
            interactions_new=tuple(range(start, start + len(items))),
        )

    def with_json_output_schema(self, schema: str | None) -> ConversationBody:
        return replace(self, json_output_schema=schema)

    def with_tool_filter(self, tool_filter: str) -> ConversationBody:
        return replace(self, tool_filter=tool_filter)

    def with_context_filter(self, context_filter: str) -> ConversationBody:
        return replace(self, context_filter=context_filter)

    def with_interactions(self, interactions: Sequence[Interaction], interactions_new: Sequence[int] = ()) -> ConversationBody:
        return replace(self, interactions=tuple(interactions), interactions_new=tuple(interactions_new))

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self, *, include_new_markers: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "interactions": [interaction_to_dict(item) for item in self.interactions],
            "tool_filter": self.tool_filter,
            "context_filter": self.context_filter,
            "json_output_schema": self.json_output_schema,
        }
        if include_new_markers:
            data["interactions_new"] = list(self.interactions_new)
        return data

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ConversationBody:
        """Rebuild a persisted body; replayed interactions are history, not new."""
        interactions = tuple(interaction_from_dict(item) for item in payload.get("interactions") or ())
        body = cls(
            interactions=interactions,
            tool_filter=str(payload.get("tool_filter") or DEFAULT_FILTER),
            context_filter=str(payload.get("context_filter") or DEFAULT_FILTER),
            json_output_schema=payload.get("json_output_schema"),
        )
        LOGGER.debug("Restored conversation body with %d interaction(s)", len(interactions))
        return body

    def fingerprint(self) -> str:
        """Stable sha256 over the serialized history and policies."""
        return hashlib.sha256(canonical_json(self.to_dict()).encode("utf-8")).hexdigest()
