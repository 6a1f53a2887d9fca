"""Conversation interactions.

An interaction is one entry of a conversation body. The set of variants is
closed: text, tool call, tool result, image and error. Every variant is a
frozen dataclass; "changing" an interaction means building a new one.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union

from .messages import RuntimeMessage
from .metrics import Metrics

__all__ = [
    "Agent",
    "TextInteraction",
    "ToolCallInteraction",
    "ToolResultInteraction",
    "ImageInteraction",
    "ErrorInteraction",
    "Interaction",
    "INTERACTION_TYPES",
    "interaction_to_dict",
    "interaction_from_dict",
    "canonical_json",
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def canonical_json(value: Any) -> str:
    """Serialize *value* deterministically (sorted keys, compact separators)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _short_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class Agent(str, Enum):
    """Who produced an interaction."""

    CONTEXT = "context"
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> Agent:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


_ROLE_CLASSES = {
    Agent.CONTEXT: "context",
    Agent.SYSTEM: "system",
    Agent.USER: "user",
    Agent.ASSISTANT: "assistant",
    Agent.TOOL_CALL: "tool",
    Agent.TOOL_RESULT: "tool",
    Agent.ERROR: "error",
    Agent.UNKNOWN: "unknown",
}

_DISPLAY_NAMES = {
    Agent.CONTEXT: "Context",
    Agent.SYSTEM: "System",
    Agent.USER: "User",
    Agent.ASSISTANT: "Assistant",
    Agent.TOOL_CALL: "Tool Call",
    Agent.TOOL_RESULT: "Tool Result",
    Agent.ERROR: "Error",
    Agent.UNKNOWN: "Unknown",
}


class _InteractionOps:
    """Operations shared by every interaction variant."""

    __slots__ = ()

    def with_metrics(self, metrics: Metrics):
        return replace(self, metrics=metrics)  # type: ignore[type-var]

    def with_turn_id(self, turn_id: str):
        return replace(self, turn_id=turn_id)  # type: ignore[type-var]

    def role_class(self) -> str:
        return _ROLE_CLASSES[self.agent]  # type: ignore[attr-defined]

    def display_name(self) -> str:
        return _DISPLAY_NAMES[self.agent]  # type: ignore[attr-defined]


# -----------------------------------------------------------------------------
# Variants
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextInteraction(_InteractionOps):
    """Plain text from any agent, optionally with model reasoning."""

    content: str = ""
    reasoning: str | None = None
    agent: Agent = Agent.ASSISTANT
    turn_id: str = ""
    time: datetime = field(default_factory=_utcnow)
    metrics: Metrics = field(default_factory=Metrics)

    def stream_key(self) -> str:
        if self.turn_id:
            return f"turn:{self.turn_id}"
        return f"text:{_short_hash(self.content)}"

    def dedup_key(self) -> str:
        return f"{self.stream_key()}:{_short_hash(self.content)}"

    def render_content(self) -> str:
        return self.content


@dataclass(slots=True, frozen=True)
class ToolCallInteraction(_InteractionOps):
    """A model request to run a tool."""

    id: str = ""
    name: str = ""
    arguments: Mapping[str, Any] | None = None
    agent: Agent = Agent.TOOL_CALL
    turn_id: str = ""
    time: datetime = field(default_factory=_utcnow)
    metrics: Metrics = field(default_factory=Metrics)

    def stream_key(self) -> str:
        if self.turn_id:
            return f"turn:{self.turn_id}"
        return f"tool.call:{self.id or self.name}"

    def dedup_key(self) -> str:
        base = f"tool.call:{self.id or self.name}:{_short_hash(canonical_json(self.arguments or {}))}"
        if self.turn_id:
            return f"turn:{self.turn_id}:{base}"
        return base

    def render_content(self) -> str:
        args = json.dumps(dict(self.arguments or {}), indent=2, ensure_ascii=False, default=str)
        return f"{self.name}({self.id})\n{args}"


@dataclass(slots=True, frozen=True)
class ToolResultInteraction(_InteractionOps):
    """The outcome of a tool call, matched to the call by ``id``."""

    id: str = ""
    name: str = ""
    result: Mapping[str, Any] = field(default_factory=dict)
    messages: tuple[RuntimeMessage, ...] = ()
    agent: Agent = Agent.TOOL_RESULT
    turn_id: str = ""
    time: datetime = field(default_factory=_utcnow)
    metrics: Metrics = field(default_factory=Metrics)

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages or ()))

    def stream_key(self) -> str:
        if self.turn_id:
            return f"turn:{self.turn_id}:tool.result:{self.id}"
        return f"tool.result:{self.id}"

    def dedup_key(self) -> str:
        return f"{self.stream_key()}:{_short_hash(canonical_json(self.result))}"

    def render_content(self) -> str:
        return json.dumps(dict(self.result), indent=2, ensure_ascii=False, default=str)


@dataclass(slots=True, frozen=True)
class ImageInteraction(_InteractionOps):
    """An image generation request and, once answered, its result."""

    original_prompt: str = ""
    image_url: str | None = None
    image_data: str | None = None
    revised_prompt: str | None = None
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"
    messages: tuple[RuntimeMessage, ...] = ()
    agent: Agent = Agent.ASSISTANT
    turn_id: str = ""
    time: datetime = field(default_factory=_utcnow)
    metrics: Metrics = field(default_factory=Metrics)

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages or ()))

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.image_data)

    def stream_key(self) -> str:
        if self.turn_id:
            return f"turn:{self.turn_id}"
        if self.image_url:
            return f"image:{self.image_url}"
        if self.image_data:
            return f"image:{_short_hash(self.image_data)}"
        return f"image:{self.original_prompt}"

    def dedup_key(self) -> str:
        return f"{self.stream_key()}:{self.size}:{self.quality}:{self.style}"

    def render_content(self) -> str:
        prompt = self.revised_prompt or self.original_prompt
        if self.image_url:
            return f"![{prompt}]({self.image_url})"
        if self.image_data:
            return f"![{prompt}](data:image/png;base64,{self.image_data})"
        return prompt


@dataclass(slots=True, frozen=True)
class ErrorInteraction(_InteractionOps):
    """An error surfaced inside the conversation; content is the raw error text."""

    content: str = ""
    agent: Agent = Agent.ERROR
    turn_id: str = ""
    time: datetime = field(default_factory=_utcnow)
    metrics: Metrics = field(default_factory=Metrics)

    def stream_key(self) -> str:
        return f"error:{_short_hash(self.content)}"

    def dedup_key(self) -> str:
        return self.stream_key()

    def render_content(self) -> str:
        return self.content


Interaction = Union[
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
    ImageInteraction,
    ErrorInteraction,
]

INTERACTION_TYPES: tuple[type, ...] = (
    TextInteraction,
    ToolCallInteraction,
    ToolResultInteraction,
    ImageInteraction,
    ErrorInteraction,
)


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------


def _common_to_dict(interaction: Interaction) -> dict[str, Any]:
    return {
        "agent": interaction.agent.value,
        "turn_id": interaction.turn_id,
        "time": interaction.time.isoformat(),
        "metrics": interaction.metrics.to_dict(),
    }


def _common_from_dict(payload: Mapping[str, Any]) -> dict[str, Any]:
    common: dict[str, Any] = {
        "turn_id": str(payload.get("turn_id") or ""),
        "metrics": Metrics.from_dict(payload.get("metrics")),
    }
    if "agent" in payload:
        common["agent"] = Agent.parse(payload.get("agent"))
    raw_time = payload.get("time")
    if raw_time:
        common["time"] = datetime.fromisoformat(str(raw_time))
    return common


def interaction_to_dict(interaction: Interaction) -> dict[str, Any]:
    """Serialize an interaction into a JSON-compatible dict tagged with ``type``."""
    data = _common_to_dict(interaction)
    if isinstance(interaction, TextInteraction):
        data.update(type="text", content=interaction.content, reasoning=interaction.reasoning)
    elif isinstance(interaction, ToolCallInteraction):
        data.update(
            type="tool_call",
            id=interaction.id,
            name=interaction.name,
            arguments=dict(interaction.arguments) if interaction.arguments is not None else None,
        )
    elif isinstance(interaction, ToolResultInteraction):
        data.update(
            type="tool_result",
            id=interaction.id,
            name=interaction.name,
            result=dict(interaction.result),
            messages=[message.to_dict() for message in interaction.messages],
        )
    elif isinstance(interaction, ImageInteraction):
        data.update(
            type="image",
            original_prompt=interaction.original_prompt,
            image_url=interaction.image_url,
            image_data=interaction.image_data,
            revised_prompt=interaction.revised_prompt,
            size=interaction.size,
            quality=interaction.quality,
            style=interaction.style,
            messages=[message.to_dict() for message in interaction.messages],
        )
    elif isinstance(interaction, ErrorInteraction):
        data.update(type="error", content=interaction.content)
    else:
        raise TypeError(f"Unsupported interaction type: {type(interaction).__name__}")
    return data


def interaction_from_dict(payload: Mapping[str, Any]) -> Interaction:
    """Rebuild an interaction from :func:`interaction_to_dict` output.

    Raises:
        ValueError: If the ``type`` tag is missing or unknown.
    """
    kind = payload.get("type")
    common = _common_from_dict(payload)
    if kind == "text":
        return TextInteraction(
            content=str(payload.get("content") or ""),
            reasoning=payload.get("reasoning"),
            **common,
        )
    if kind == "tool_call":
        arguments = payload.get("arguments")
        return ToolCallInteraction(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            arguments=dict(arguments) if arguments is not None else None,
            **common,
        )
    if kind == "tool_result":
        return ToolResultInteraction(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            result=dict(payload.get("result") or {}),
            messages=tuple(RuntimeMessage.from_dict(item) for item in payload.get("messages") or ()),
            **common,
        )
    if kind == "image":
        return ImageInteraction(
            original_prompt=str(payload.get("original_prompt") or ""),
            image_url=payload.get("image_url"),
            image_data=payload.get("image_data"),
            revised_prompt=payload.get("revised_prompt"),
            size=str(payload.get("size") or "1024x1024"),
            quality=str(payload.get("quality") or "standard"),
            style=str(payload.get("style") or "vivid"),
            messages=tuple(RuntimeMessage.from_dict(item) for item in payload.get("messages") or ()),
            **common,
        )
    if kind == "error":
        return ErrorInteraction(content=str(payload.get("content") or ""), **common)
    raise ValueError(f"Unknown interaction type: {kind!r}")
