"""Model capability registry.

Providers register what each of their models can do; requests consult the
registry to pick a capable model, check streaming support and compute
context-window usage. Keys are ``"provider.model"`` (lowercased) and a model
name ending in ``*`` acts as a prefix wildcard for every model it matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from .capability import Capability, parse_capability, to_detailed_string

__all__ = [
    "ModelCapabilities",
    "ModelCapabilityRegistryProtocol",
    "ModelCapabilityRegistry",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Model Capabilities
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    """Capability record for a single model (or wildcard model family).

    Attributes:
        provider: Provider identifier.
        model: Model name; a trailing ``*`` matches any model with that prefix.
        capabilities: Everything the model supports.
        default_for: Capabilities this model is the provider default for.
        context_limit: Context window in tokens, when known.
        supports_streaming: Whether the model can stream responses.
    """

    provider: str
    model: str
    capabilities: Capability = Capability.NONE
    default_for: Capability = Capability.NONE
    context_limit: int | None = None
    supports_streaming: bool = True

    @property
    def key(self) -> str:
        return f"{self.provider.lower()}.{self.model.lower()}"

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.model

    def has_capability(self, required: Capability) -> bool:
        return (self.capabilities & required) == required

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "capabilities": to_detailed_string(self.capabilities),
            "default_for": to_detailed_string(self.default_for),
            "context_limit": self.context_limit,
            "supports_streaming": self.supports_streaming,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ModelCapabilities:
        limit = payload.get("context_limit")
        return cls(
            provider=str(payload.get("provider", "")),
            model=str(payload.get("model", "")),
            capabilities=parse_capability(payload.get("capabilities")),
            default_for=parse_capability(payload.get("default_for")),
            context_limit=int(limit) if limit is not None else None,
            supports_streaming=bool(payload.get("supports_streaming", True)),
        )


# -----------------------------------------------------------------------------
# Registry Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelCapabilityRegistryProtocol(Protocol):
    """Read-only view of model capabilities used by the call core."""

    def get_capabilities(self, provider: str, model: str) -> ModelCapabilities | None:
        ...

    def get_default_model(self, provider: str, capability: Capability) -> str:
        ...

    def validate_capabilities(self, provider: str, model: str, capability: Capability) -> bool:
        ...

    def get_context_limit(self, provider: str, model: str) -> int | None:
        ...


# -----------------------------------------------------------------------------
# In-memory Registry
# -----------------------------------------------------------------------------


class ModelCapabilityRegistry:
    """In-memory registry of :class:`ModelCapabilities` records.

    Example:
        registry = ModelCapabilityRegistry()
        registry.register(ModelCapabilities("openai", "gpt-4o*", Capability.TOOL_CHAT))
        registry.get_capabilities("openai", "gpt-4o-mini")
    """

    def __init__(self, models: Iterable[ModelCapabilities] | None = None) -> None:
        self._models: dict[str, ModelCapabilities] = {}
        for record in models or ():
            self.register(record)

    def register(self, record: ModelCapabilities) -> None:
        """Register (or replace) a capability record.

        Records without a provider or model name are ignored.
        """
        if not record.provider.strip() or not record.model.strip():
            LOGGER.debug("Ignoring model capability record without provider/model: %s", record)
            return
        self._models[record.key] = record
        LOGGER.debug(
            "Registered model %s with capabilities %s",
            record.key,
            to_detailed_string(record.capabilities),
        )

    def register_model(
        self,
        provider: str,
        model: str,
        capabilities: Capability,
        *,
        default_for: Capability = Capability.NONE,
        context_limit: int | None = None,
        supports_streaming: bool = True,
    ) -> None:
        self.register(
            ModelCapabilities(
                provider=provider.lower(),
                model=model,
                capabilities=capabilities,
                default_for=default_for,
                context_limit=context_limit,
                supports_streaming=supports_streaming,
            )
        )

    def get_capabilities(self, provider: str, model: str) -> ModelCapabilities | None:
        """Return the record for *model*, trying an exact key before wildcards."""
        provider_key = (provider or "").lower()
        model_key = (model or "").lower()
        record = self._models.get(f"{provider_key}.{model_key}")
        if record is not None:
            return record
        if not model_key:
            return None
        prefix = f"{provider_key}."
        for key, candidate in self._models.items():
            if not key.startswith(prefix) or not key.endswith("*"):
                continue
            model_prefix = key[len(prefix) : -1]
            if model_key.startswith(model_prefix):
                return candidate
        return None

    def find_models(self, capability: Capability = Capability.NONE) -> list[ModelCapabilities]:
        if not capability:
            return list(self._models.values())
        return [record for record in self._models.values() if record.has_capability(capability)]

    def has_provider(self, provider: str) -> bool:
        prefix = f"{(provider or '').lower()}."
        return bool(provider) and any(key.startswith(prefix) for key in self._models)

    def validate_capabilities(self, provider: str, model: str, capability: Capability) -> bool:
        """Return True when *model* is registered and supports *capability*."""
        record = self.get_capabilities(provider, model)
        if record is None:
            return False
        return record.has_capability(capability)

    def get_context_limit(self, provider: str, model: str) -> int | None:
        record = self.get_capabilities(provider, model)
        return record.context_limit if record is not None else None

    def get_default_model(self, provider: str, capability: Capability) -> str:
        """Return the provider's default model for *capability*, or ``""``.

        Concrete models win over wildcard families, and exact default
        matches win over models that are merely capable.
        """
        if not provider:
            return ""
        provider_models = [
            record for record in self._models.values() if record.provider.lower() == provider.lower()
        ]
        if not provider_models:
            return ""

        concrete = [record for record in provider_models if not record.is_wildcard]
        wildcard = [record for record in provider_models if record.is_wildcard]

        def exact(record: ModelCapabilities) -> bool:
            return (record.default_for & capability) == capability

        def compatible(record: ModelCapabilities) -> bool:
            return bool(record.default_for) and record.has_capability(capability)

        for record in concrete:
            if exact(record):
                return record.model
        for record in concrete:
            if compatible(record):
                return record.model
        for record in wildcard:
            if exact(record):
                return self._resolve_wildcard(record)
        for record in wildcard:
            if compatible(record):
                return self._resolve_wildcard(record)
        LOGGER.debug(
            "No default model found for %s with capability %s",
            provider,
            to_detailed_string(capability),
        )
        return ""

    def _resolve_wildcard(self, record: ModelCapabilities) -> str:
        prefix = record.model.replace("*", "").lower()
        matches = sorted(
            candidate.model
            for candidate in self._models.values()
            if candidate.provider.lower() == record.provider.lower()
            and not candidate.is_wildcard
            and candidate.model.lower().startswith(prefix)
        )
        if matches:
            return matches[0]
        return record.model

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._models
