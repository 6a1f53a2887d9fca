"""Metadata envelope attached to tool result payloads.

Tool results are JSON objects. The envelope, stored under ``__envelope``,
records which tool produced the payload and where the payload lives so
consumers do not have to guess between ``result``, ``list`` or ``items``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Mapping, MutableMapping

__all__ = ["ENVELOPE_KEY", "ToolResultContentType", "ToolResultEnvelope", "content_type_for"]

LOGGER = logging.getLogger(__name__)

ENVELOPE_KEY = "__envelope"
_DEFAULT_PAYLOAD_PATH = "result"
_COMPAT_KEYS = ("result", "list", "items")


class ToolResultContentType(IntEnum):
    UNKNOWN = 0
    TEXT = 1
    LIST = 2
    OBJECT = 3
    IMAGE = 4
    BINARY = 5


def content_type_for(payload: Any) -> ToolResultContentType:
    if isinstance(payload, str):
        return ToolResultContentType.TEXT
    if isinstance(payload, (bytes, bytearray)):
        return ToolResultContentType.BINARY
    if isinstance(payload, (list, tuple)):
        return ToolResultContentType.LIST
    if isinstance(payload, Mapping):
        return ToolResultContentType.OBJECT
    return ToolResultContentType.UNKNOWN


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ToolResultEnvelope:
    """Provenance and payload location of a tool result."""

    tool: str | None = None
    provider: str | None = None
    model: str | None = None
    tool_call_id: str | None = None
    content_type: ToolResultContentType = ToolResultContentType.UNKNOWN
    payload_path: str = _DEFAULT_PAYLOAD_PATH
    schema_ref: str | None = None
    compat_keys: list[str] = field(default_factory=lambda: list(_COMPAT_KEYS))
    created_utc: datetime = field(default_factory=_utcnow)
    tags: list[str] = field(default_factory=list)
    version: str = "1"

    @classmethod
    def create(
        cls,
        tool: str | None,
        content_type: ToolResultContentType = ToolResultContentType.UNKNOWN,
        payload_path: str = _DEFAULT_PAYLOAD_PATH,
        *,
        provider: str | None = None,
        model: str | None = None,
        tool_call_id: str | None = None,
    ) -> ToolResultEnvelope:
        return cls(
            tool=tool,
            provider=provider,
            model=model,
            tool_call_id=tool_call_id,
            content_type=content_type,
            payload_path=payload_path.strip() if payload_path and payload_path.strip() else _DEFAULT_PAYLOAD_PATH,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "tool": self.tool,
            "provider": self.provider,
            "model": self.model,
            "toolCallId": self.tool_call_id,
            "contentType": int(self.content_type),
            "payloadPath": self.payload_path,
            "schemaRef": self.schema_ref,
            "compat": list(self.compat_keys),
            "createdUtc": self.created_utc.isoformat(),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ToolResultEnvelope:
        created = payload.get("createdUtc")
        compat = payload.get("compat")
        return cls(
            tool=payload.get("tool"),
            provider=payload.get("provider"),
            model=payload.get("model"),
            tool_call_id=payload.get("toolCallId"),
            content_type=ToolResultContentType(int(payload.get("contentType") or 0)),
            payload_path=str(payload.get("payloadPath") or _DEFAULT_PAYLOAD_PATH),
            schema_ref=payload.get("schemaRef"),
            compat_keys=[str(key) for key in compat] if compat is not None else list(_COMPAT_KEYS),
            created_utc=datetime.fromisoformat(created) if created else _utcnow(),
            tags=[str(tag) for tag in payload.get("tags") or ()],
            version=str(payload.get("version") or "1"),
        )

    # ------------------------------------------------------------------
    # Attaching and reading
    # ------------------------------------------------------------------

    def attach_to(self, root: MutableMapping[str, Any]) -> None:
        root[ENVELOPE_KEY] = self.to_dict()

    @classmethod
    def try_get(cls, root: Mapping[str, Any] | None) -> ToolResultEnvelope | None:
        """Read the envelope from *root*; malformed envelopes yield ``None``."""
        if not root:
            return None
        raw = root.get(ENVELOPE_KEY)
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls.from_dict(raw)
        except (TypeError, ValueError):
            LOGGER.debug("Ignoring malformed tool result envelope: %r", raw)
            return None

    @classmethod
    def ensure(
        cls,
        root: MutableMapping[str, Any],
        tool: str | None = None,
        content_type: ToolResultContentType = ToolResultContentType.UNKNOWN,
        payload_path: str = _DEFAULT_PAYLOAD_PATH,
    ) -> ToolResultEnvelope:
        envelope = cls.try_get(root) or cls.create(tool, content_type, payload_path)
        envelope.attach_to(root)
        return envelope

    @classmethod
    def get_payload(cls, root: Mapping[str, Any] | None) -> Any:
        """Return the payload: envelope path first, then compat keys, else *root*."""
        if root is None:
            return None
        envelope = cls.try_get(root)
        paths: list[str] = []
        if envelope is not None and envelope.payload_path:
            paths.append(envelope.payload_path)
        paths.extend(envelope.compat_keys if envelope is not None else _COMPAT_KEYS)
        for path in paths:
            if path in root:
                return root[path]
        return root

    @staticmethod
    def wrap(
        payload: Any,
        envelope: ToolResultEnvelope | None = None,
        payload_key: str = _DEFAULT_PAYLOAD_PATH,
    ) -> dict[str, Any]:
        root: dict[str, Any] = {payload_key: payload}
        (envelope or ToolResultEnvelope()).attach_to(root)
        return root
