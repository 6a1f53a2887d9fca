"""Provider contract, shared selection policy and provider registry.

Concrete providers own the wire encoding and transport; the call core only
relies on the :class:`Provider` protocol below.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol, runtime_checkable

from ...services.settings import ProviderSettings, Settings
from ..ai_types import CancelToken
from .capability import Capability, to_detailed_string
from .interactions import Interaction
from .models import ModelCapabilityRegistryProtocol
from .streaming import StreamingAdapter

if TYPE_CHECKING:
    from .request import CallRequest
    from .result import CallResult

__all__ = ["Provider", "BaseProvider", "ProviderRegistry", "DuplicateProviderError"]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Provider Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Provider(Protocol):
    """Contract every AI provider implements."""

    @property
    def name(self) -> str:
        ...

    @property
    def settings(self) -> ProviderSettings:
        ...

    def encode(self, request: CallRequest) -> str:
        """Encode the request into the provider's wire payload."""
        ...

    def decode(self, raw: Any, request: CallRequest) -> list[Interaction]:
        """Decode a raw provider response into interactions."""
        ...

    async def call(self, request: CallRequest, cancel: CancelToken | None = None) -> CallResult | None:
        """Perform the call; may raise transport exceptions."""
        ...

    def select_model(self, capability: Capability, requested_model: str | None) -> str:
        ...

    def get_default_model(self, capability: Capability, *, use_settings: bool = True) -> str:
        ...

    def validate_capabilities(self, model: str, capability: Capability) -> bool:
        ...

    def get_streaming_adapter(self) -> StreamingAdapter | None:
        ...


# -----------------------------------------------------------------------------
# Base Provider
# -----------------------------------------------------------------------------


class BaseProvider(ABC):
    """Base class supplying model selection on top of a capability registry.

    Subclasses implement :meth:`encode`, :meth:`decode` and :meth:`call`.
    *settings* may be the provider's own :class:`ProviderSettings` or the
    application :class:`Settings`, in which case the entry for this provider
    is used (and created when missing).
    """

    def __init__(
        self,
        name: str,
        *,
        models: ModelCapabilityRegistryProtocol,
        settings: ProviderSettings | Settings | None = None,
    ) -> None:
        self._name = name.strip().lower()
        self._models = models
        if isinstance(settings, Settings):
            settings = settings.provider_settings(self._name)
        self._settings = settings or ProviderSettings(name=self._name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def settings(self) -> ProviderSettings:
        return self._settings

    @property
    def models(self) -> ModelCapabilityRegistryProtocol:
        return self._models

    @abstractmethod
    def encode(self, request: CallRequest) -> str:
        """Encode the request into the provider's wire payload."""

    @abstractmethod
    def decode(self, raw: Any, request: CallRequest) -> list[Interaction]:
        """Decode a raw provider response into interactions."""

    @abstractmethod
    async def call(self, request: CallRequest, cancel: CancelToken | None = None) -> CallResult | None:
        """Perform the provider call."""

    def get_streaming_adapter(self) -> StreamingAdapter | None:
        return None

    def validate_capabilities(self, model: str, capability: Capability) -> bool:
        return self._models.validate_capabilities(self._name, model, capability)

    def get_default_model(self, capability: Capability, *, use_settings: bool = True) -> str:
        """Return the configured model when capable, else the registry default."""
        if use_settings:
            configured = (self._settings.model or "").strip()
            if configured and self.validate_capabilities(configured, capability):
                return configured
        return self._models.get_default_model(self._name, capability)

    def select_model(self, capability: Capability, requested_model: str | None) -> str:
        """Pick the model to call.

        The requested model wins when it supports *capability*; otherwise the
        provider default for *capability* is used. Returns ``""`` when no
        registered model qualifies.
        """
        requested = (requested_model or "").strip()
        if requested and self.validate_capabilities(requested, capability):
            return requested
        selected = self.get_default_model(capability)
        LOGGER.debug(
            "Provider %s selected model %r for %s (requested %r)",
            self._name,
            selected,
            to_detailed_string(capability),
            requested,
        )
        return selected


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------


class DuplicateProviderError(Exception):
    """Raised when a provider name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Provider '{name}' is already registered")


class ProviderRegistry:
    """Name-keyed collection of provider instances (case-insensitive)."""

    def __init__(self, providers: Iterable[Provider] | None = None) -> None:
        self._providers: dict[str, Provider] = {}
        for provider in providers or ():
            self.register(provider)

    def register(self, provider: Provider, *, allow_override: bool = False) -> None:
        key = provider.name.strip().lower()
        if key in self._providers and not allow_override:
            raise DuplicateProviderError(key)
        self._providers[key] = provider
        LOGGER.debug("Registered provider: %s", key)

    def unregister(self, name: str) -> bool:
        return self._providers.pop((name or "").strip().lower(), None) is not None

    def get(self, name: str | None) -> Provider | None:
        if not name:
            return None
        return self._providers.get(name.strip().lower())

    def has(self, name: str | None) -> bool:
        return self.get(name) is not None

    def names(self) -> list[str]:
        return list(self._providers)

    def as_mapping(self) -> Mapping[str, Provider]:
        return dict(self._providers)

    def __len__(self) -> int:
        return len(self._providers)
