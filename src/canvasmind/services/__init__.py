"""Service layer helpers (settings, telemetry)."""

from .settings import ProviderSettings, SecretVault, Settings, SettingsStore
from .telemetry import InMemoryTelemetrySink, emit, register_event_listener

__all__ = [
    "InMemoryTelemetrySink",
    "ProviderSettings",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "emit",
    "register_event_listener",
]
