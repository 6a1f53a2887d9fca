"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "ProviderSettings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".canvasmind"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "CANVASMIND_PROVIDER": "default_provider",
    "CANVASMIND_MODEL": "model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CANVASMIND_DEBUG_LOGGING": "debug_logging",
    "CANVASMIND_ENABLE_STREAMING": "enable_streaming",
    "CANVASMIND_PROCESS_TOOLS": "process_tools",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CANVASMIND_REQUEST_TIMEOUT": "request_timeout",
    "CANVASMIND_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "CANVASMIND_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
_FERNET_PREFIX = "fernet"


@dataclass(slots=True)
class ProviderSettings:
    """Per-provider configuration.

    Attributes:
        name: Provider identifier.
        api_key: Secret used by the provider's transport.
        base_url: Optional endpoint override.
        model: Preferred model; used when it supports the requested capability.
        enable_streaming: Whether streaming calls may be made to this provider.
        request_timeout: Provider specific timeout override in seconds.
        metadata: Free-form provider options.
    """

    name: str
    api_key: str = ""
    base_url: str | None = None
    model: str = ""
    enable_streaming: bool = True
    request_timeout: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    default_provider: str = ""
    model: str = ""
    request_timeout: float = 120.0
    tool_timeout: float = 120.0
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    enable_streaming: bool = True
    process_tools: bool = True
    debug_logging: bool = False
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def provider_settings(self, name: str) -> ProviderSettings:
        """Return the settings for *name*, creating defaults when absent."""
        key = (name or "").strip().lower()
        existing = self.providers.get(key)
        if existing is None:
            existing = ProviderSettings(name=key)
            self.providers[key] = existing
        return existing


class SecretVault:
    """Encrypts and decrypts sensitive strings for settings persistence."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def strategy(self) -> str:
        return _FERNET_PREFIX

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_FERNET_PREFIX}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, _FERNET_PREFIX):
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying runtime and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            data["providers"] = self._load_providers(payload.get("providers"))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug(
                "Settings loaded from %s: provider=%s, %d provider profile(s)",
                self._path,
                settings.default_provider,
                len(settings.providers),
            )
            if payload.get("version") != _SETTINGS_VERSION:
                try:
                    self.save(settings)
                except OSError as exc:  # pragma: no cover - read-only locations
                    LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        providers: Dict[str, Any] = {}
        for key, provider in settings.providers.items():
            entry = asdict(provider)
            api_key = entry.pop("api_key", "") or ""
            ciphertext = self._vault.encrypt(api_key)
            if ciphertext:
                entry[_API_KEY_FIELD] = ciphertext
            providers[key] = entry
        data["providers"] = providers
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _load_providers(self, payload: Any) -> dict[str, ProviderSettings]:
        providers: dict[str, ProviderSettings] = {}
        if not isinstance(payload, Mapping):
            return providers
        allowed = {item.name for item in fields(ProviderSettings)} - {"api_key"}
        for key, entry in payload.items():
            if not isinstance(entry, Mapping):
                continue
            data = {name: value for name, value in entry.items() if name in allowed}
            data.setdefault("name", str(key))
            try:
                provider = ProviderSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Provider settings for %s are invalid: %s", key, exc)
                continue
            ciphertext = entry.get(_API_KEY_FIELD)
            if ciphertext:
                provider.api_key = self._vault.decrypt(ciphertext)
            elif entry.get("api_key"):
                provider.api_key = str(entry["api_key"])
            providers[str(key).lower()] = provider
        return providers

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _apply_overrides(self, settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
        allowed = {item.name for item in fields(Settings)} - {"providers"}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"providers"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
