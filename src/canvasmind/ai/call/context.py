"""Dependencies a call needs, bundled and passed explicitly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence, runtime_checkable

from ...services.settings import ProviderSettings, Settings
from ..utils.tokens import TokenCounterRegistry
from .filters import Filter
from .models import ModelCapabilityRegistry, ModelCapabilityRegistryProtocol
from .providers import Provider, ProviderRegistry

__all__ = ["CallContext", "ContextProvider"]


@runtime_checkable
class ContextProvider(Protocol):
    """Source of key/value facts injected into the conversation."""

    @property
    def name(self) -> str:
        ...

    def get_context(self) -> Mapping[str, str]:
        ...


@dataclass(slots=True)
class CallContext:
    """Registries and configuration shared by requests.

    Attributes:
        models: Model capability registry.
        providers: Provider instances by name.
        settings: Application settings.
        context_providers: Sources for context injection.
        token_counters: Token counters used for heuristic estimates.
    """

    models: ModelCapabilityRegistryProtocol = field(default_factory=ModelCapabilityRegistry)
    providers: ProviderRegistry = field(default_factory=ProviderRegistry)
    settings: Settings = field(default_factory=Settings)
    context_providers: Sequence[ContextProvider] = ()
    token_counters: TokenCounterRegistry = field(default_factory=TokenCounterRegistry)

    def get_provider(self, name: str | None) -> Provider | None:
        return self.providers.get(name)

    def provider_settings(self, provider: Provider) -> ProviderSettings:
        """Application settings for *provider*, else the provider's own."""
        configured = self.settings.providers.get(provider.name.strip().lower())
        return configured if configured is not None else provider.settings

    def collect_context(self, context_filter: str | None) -> dict[str, str]:
        """Merge key/values from the context providers selected by *context_filter*."""
        selected = Filter.parse(context_filter)
        merged: dict[str, str] = {}
        for provider in self.context_providers:
            if not selected.should_include(provider.name):
                continue
            for key, value in provider.get_context().items():
                if value is None or str(value) == "":
                    continue
                merged[str(key)] = str(value)
        return merged
