"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from .provider_catalog import DEFAULT_PROVIDER, PROVIDERS

__all__ = [
    "ProviderSettings",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "default_provider_settings",
    "redact_secret",
    "redact_settings",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".seeva"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
_ENV_OVERRIDES: Mapping[str, str] = {
    "SEEVA_PROVIDER": "active_provider",
    "SEEVA_SYSTEM_PROMPT": "system_prompt",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SEEVA_DEBUG_LOGGING": "debug_logging",
    "SEEVA_ENABLE_CONTEXT": "enable_context",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SEEVA_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SEEVA_SETTLE_DELAY_MS": "settle_delay_ms",
    "SEEVA_CAPTURE_HANDOFF_MS": "capture_handoff_ms",
}
# SEEVA_<PROVIDER>_API_KEY / SEEVA_<PROVIDER>_MODEL
_PROVIDER_ENV_FIELDS: Mapping[str, str] = {
    "API_KEY": "api_key",
    "MODEL": "default_model",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class ProviderSettings:
    """Per-provider credential and generation settings."""

    enabled: bool = False
    api_key: str = ""
    default_model: str = ""
    temperature: float = 0.7
    max_tokens: int = 32_000
    validated: bool = False
    base_url: str | None = None


def default_provider_settings() -> dict[str, ProviderSettings]:
    """Return fresh provider settings seeded from the provider catalog."""

    return {
        provider_id: ProviderSettings(
            enabled=info.enabled,
            default_model=info.default_model,
            temperature=info.temperature,
            max_tokens=info.max_tokens,
            base_url=info.base_url,
        )
        for provider_id, info in PROVIDERS.items()
    }


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    active_provider: str = DEFAULT_PROVIDER
    providers: dict[str, ProviderSettings] = field(default_factory=default_provider_settings)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    enable_context: bool = True
    settle_delay_ms: int = 200
    capture_handoff_ms: int = 150
    request_timeout: float = 60.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    data_dir: str | None = None
    debug_logging: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def provider(self, provider_id: str) -> ProviderSettings:
        """Return the settings for ``provider_id``, creating catalog defaults when absent."""

        key = provider_id.strip().lower()
        existing = self.providers.get(key)
        if existing is not None:
            return existing
        if key not in PROVIDERS:
            raise KeyError(f"Unknown provider: {provider_id!r}")
        created = default_provider_settings()[key]
        self.providers[key] = created
        return created


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

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


class SecretVault:
    """Encrypts and decrypts provider API keys for settings persistence.

    Tokens are stored as ``<provider-name>:<payload>`` so the backend used to
    write a secret can be recovered on read.
    """

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._provider = provider or FernetSecretProvider(self._key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        payload = self._provider.encrypt(secret)
        return f"{self._provider.name}:{payload}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            raise ValueError(f"Secret was written by unknown backend '{prefix}'")
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

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
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            provider_payload = payload.pop("providers", None)
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            providers, migrated = self._deserialize_providers(provider_payload)
            settings.providers = providers
            needs_migration = migrated
            if settings.active_provider not in settings.providers:
                LOGGER.warning(
                    "Unknown active provider '%s'; falling back to %s.",
                    settings.active_provider,
                    DEFAULT_PROVIDER,
                )
                settings.active_provider = DEFAULT_PROVIDER
                needs_migration = True

        LOGGER.debug(
            "Settings loaded from %s: active_provider=%s, configured=%s",
            self._path,
            settings.active_provider,
            sorted(pid for pid, entry in settings.providers.items() if entry.api_key),
        )

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (active_provider=%s)", self._path, settings.active_provider)
        return self._path

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        providers: Dict[str, Any] = {}
        for provider_id, entry in data.pop("providers", {}).items():
            api_key = entry.pop("api_key", "") or ""
            ciphertext = self._encrypt_secret_value(api_key, field_name=f"{provider_id} API key")
            if ciphertext:
                entry[_API_KEY_FIELD] = ciphertext
            providers[provider_id] = entry
        data["providers"] = providers
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _deserialize_providers(self, payload: Any) -> tuple[dict[str, ProviderSettings], bool]:
        providers = default_provider_settings()
        if not isinstance(payload, Mapping):
            return providers, False
        migrated = False
        allowed = {item.name for item in fields(ProviderSettings)} - {"api_key"}
        for provider_id, raw in payload.items():
            key = str(provider_id).strip().lower()
            if key not in providers or not isinstance(raw, Mapping):
                LOGGER.debug("Ignoring settings for unknown provider %s", provider_id)
                continue
            entry = dict(raw)
            plaintext, was_legacy = self._decrypt_api_key(
                entry.pop(_API_KEY_FIELD, None), entry.pop("api_key", None), provider_id=key
            )
            migrated = migrated or was_legacy
            data = {name: value for name, value in entry.items() if name in allowed}
            try:
                providers[key] = replace(providers[key], **data, api_key=plaintext)
            except TypeError as exc:
                LOGGER.warning("Provider settings for %s contained unexpected data: %s", key, exc)
        return providers, migrated

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        """Apply top-level (``request_timeout``) and provider-scoped (``openai.default_model``) overrides."""

        allowed = {item.name for item in fields(Settings)} - {"providers"}
        provider_fields = {item.name for item in fields(ProviderSettings)}
        filtered: Dict[str, Any] = {}
        provider_updates: Dict[str, Dict[str, Any]] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if "." in key:
                provider_id, _, field_name = key.partition(".")
                provider_id = provider_id.strip().lower()
                if provider_id in settings.providers and field_name in provider_fields:
                    provider_updates.setdefault(provider_id, {})[field_name] = value
                continue
            if key in allowed:
                filtered[key] = value
        if not filtered and not provider_updates:
            return settings

        LOGGER.debug(
            "Applying %s settings overrides: %s",
            source,
            sorted([*filtered, *(f"{pid}.{name}" for pid, upd in provider_updates.items() for name in upd)]),
        )
        providers = dict(settings.providers)
        for provider_id, updates in provider_updates.items():
            current = providers[provider_id]
            if "api_key" in updates and updates["api_key"] != current.api_key:
                # New key material has not been validated.
                updates.setdefault("validated", False)
            providers[provider_id] = replace(current, **updates)
        return replace(settings, **filtered, providers=providers)

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip()
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
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        for provider_id in settings.providers:
            for suffix, field_name in _PROVIDER_ENV_FIELDS.items():
                value = os.environ.get(f"SEEVA_{provider_id.upper()}_{suffix}")
                if value:
                    overrides[f"{provider_id}.{field_name}"] = value.strip()
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def _encrypt_secret_value(self, secret: str, *, field_name: str) -> str | None:
        if not secret:
            return None
        try:
            token = self._vault.encrypt(secret)
            LOGGER.debug("%s encrypted via %s backend", field_name, self._vault.strategy)
            return token
        except Exception as exc:  # pragma: no cover - extremely rare
            LOGGER.warning("Failed to encrypt %s: %s", field_name, exc)
            return None

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None, *, provider_id: str
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt %s API key: %s", provider_id, exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info(
                "Detected plaintext %s API key; migrating to encrypted storage.", provider_id
            )
            return legacy_plaintext, True
        return "", False


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


def redact_settings(settings: Settings) -> dict[str, Any]:
    """Return a JSON-ready copy of ``settings`` with every API key redacted."""

    payload = asdict(settings)
    for entry in payload.get("providers", {}).values():
        entry["api_key"] = redact_secret(entry.get("api_key", ""))
    return payload
