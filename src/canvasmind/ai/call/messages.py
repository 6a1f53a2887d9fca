"""Structured runtime diagnostics attached to requests, bodies and results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Iterable, Mapping

__all__ = [
    "MessageSeverity",
    "MessageOrigin",
    "MessageCode",
    "RuntimeMessage",
    "merge_messages",
    "has_errors",
]


class MessageSeverity(IntEnum):
    """Severity ranking; higher values sort first."""

    INFO = 0
    WARNING = 1
    ERROR = 2


class MessageOrigin(str, Enum):
    """Component that produced a diagnostic."""

    REQUEST = "request"
    VALIDATION = "validation"
    PROVIDER = "provider"
    NETWORK = "network"
    TOOL = "tool"
    RETURN = "return"


class MessageCode(IntEnum):
    """Machine-readable diagnostic codes for hosts that branch on failures."""

    UNKNOWN = 0
    PROVIDER_MISSING = 1
    UNKNOWN_PROVIDER = 2
    UNKNOWN_MODEL = 3
    NO_CAPABLE_MODEL = 4
    CAPABILITY_MISMATCH = 5
    STREAMING_DISABLED_PROVIDER = 6
    STREAMING_UNSUPPORTED_MODEL = 7
    TOOL_VALIDATION_ERROR = 8
    BODY_INVALID = 9
    RETURN_INVALID = 10
    NETWORK_TIMEOUT = 11
    AUTHENTICATION_MISSING = 12
    AUTHORIZATION_FAILED = 13
    RATE_LIMITED = 14


@dataclass(slots=True, frozen=True)
class RuntimeMessage:
    """A single diagnostic.

    Attributes:
        severity: How serious the diagnostic is.
        origin: Which component produced it.
        text: Human readable description.
        code: Machine readable code.
        surfaceable: Whether hosts should show it to end users.
    """

    severity: MessageSeverity
    origin: MessageOrigin
    text: str
    code: MessageCode = MessageCode.UNKNOWN
    surfaceable: bool = True

    @classmethod
    def error(cls, origin: MessageOrigin, text: str, code: MessageCode = MessageCode.UNKNOWN, *, surfaceable: bool = True) -> RuntimeMessage:
        return cls(MessageSeverity.ERROR, origin, text, code, surfaceable)

    @classmethod
    def warning(cls, origin: MessageOrigin, text: str, code: MessageCode = MessageCode.UNKNOWN, *, surfaceable: bool = True) -> RuntimeMessage:
        return cls(MessageSeverity.WARNING, origin, text, code, surfaceable)

    @classmethod
    def info(cls, origin: MessageOrigin, text: str, code: MessageCode = MessageCode.UNKNOWN, *, surfaceable: bool = True) -> RuntimeMessage:
        return cls(MessageSeverity.INFO, origin, text, code, surfaceable)

    @property
    def is_error(self) -> bool:
        return self.severity is MessageSeverity.ERROR

    def with_origin(self, origin: MessageOrigin) -> RuntimeMessage:
        """Return a copy re-tagged with *origin*."""
        return RuntimeMessage(self.severity, origin, self.text, self.code, self.surfaceable)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.name.lower(),
            "origin": self.origin.value,
            "text": self.text,
            "code": self.code.name,
            "surfaceable": self.surfaceable,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> RuntimeMessage:
        return cls(
            severity=MessageSeverity[str(payload.get("severity", "info")).upper()],
            origin=MessageOrigin(payload.get("origin", MessageOrigin.RETURN.value)),
            text=str(payload.get("text", "")),
            code=MessageCode[str(payload.get("code", "UNKNOWN")).upper()],
            surfaceable=bool(payload.get("surfaceable", True)),
        )


def merge_messages(*sources: Iterable[RuntimeMessage] | None) -> tuple[RuntimeMessage, ...]:
    """Merge diagnostics from several sources.

    Messages are de-duplicated by text (first occurrence wins) and then
    stable-sorted by descending severity.

    Args:
        sources: Iterables of messages; ``None`` entries are skipped.

    Returns:
        The merged, ranked messages.
    """
    seen: set[str] = set()
    merged: list[RuntimeMessage] = []
    for source in sources:
        if not source:
            continue
        for message in source:
            if message is None or message.text in seen:
                continue
            seen.add(message.text)
            merged.append(message)
    merged.sort(key=lambda message: -int(message.severity))
    return tuple(merged)


def has_errors(messages: Iterable[RuntimeMessage]) -> bool:
    return any(message.is_error for message in messages)
