"""Credential gate domain service.

Tracks per-provider key presence and validation, and blocks sends until the
active provider holds a validated key.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from ...services.backend_types import Backend
from ...services.provider_catalog import display_name
from ...services.settings import Settings
from ..events import ActiveProviderChanged, CredentialStatusChanged, EventBus, SettingsRequested
from ..models.credential_models import ProviderCredential, SendCredentials
from .errors import ValidationError, extract_error_message
from .notifier import GATE_DURATION_MS, Notifier

LOGGER = logging.getLogger(__name__)

PersistCallback = Callable[[Settings], object]


class CredentialGate:
    """Domain manager for provider credentials.

    Key material and the ``validated`` flag live in :class:`Settings` and are
    persisted through ``persist`` after every change. Each key edit bumps a
    per-provider generation; a validation result is applied only if no edit
    happened while it was in flight.

    Events Emitted:
        - CredentialStatusChanged: After any key, validation or model change
        - ActiveProviderChanged: When the provider used for sends changes
        - SettingsRequested: When a send is blocked by the gate
    """

    def __init__(
        self,
        backend: Backend,
        event_bus: EventBus,
        notifier: Notifier,
        *,
        settings: Settings,
        persist: PersistCallback | None = None,
    ) -> None:
        self._backend = backend
        self._bus = event_bus
        self._notifier = notifier
        self._settings = settings
        self._persist = persist
        self._generations: defaultdict[str, int] = defaultdict(int)
        self._inflight: defaultdict[str, int] = defaultdict(int)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def active_provider(self) -> str:
        return self._settings.active_provider

    @property
    def settings(self) -> Settings:
        return self._settings

    def credential(self, provider: str | None = None) -> ProviderCredential:
        provider_id = self._normalize(provider or self.active_provider)
        entry = self._settings.provider(provider_id)
        return ProviderCredential(
            provider=provider_id,
            display_name=display_name(provider_id),
            enabled=entry.enabled,
            has_key=bool(entry.api_key.strip()),
            validated=entry.validated and bool(entry.api_key.strip()),
            default_model=entry.default_model,
            max_tokens=entry.max_tokens,
        )

    def credentials(self) -> dict[str, ProviderCredential]:
        return {provider_id: self.credential(provider_id) for provider_id in self._settings.providers}

    def is_validating(self, provider: str | None = None) -> bool:
        return self._inflight[self._normalize(provider or self.active_provider)] > 0

    def generation(self, provider: str) -> int:
        return self._generations[self._normalize(provider)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_active_provider(self, provider: str) -> None:
        provider_id = self._normalize(provider)
        self._settings.provider(provider_id)  # raises KeyError for unknown providers
        if provider_id == self._settings.active_provider:
            return
        self._settings.active_provider = provider_id
        self._settings.provider(provider_id).enabled = True
        self._save()
        LOGGER.info("Active provider set to %s", provider_id)
        self._bus.publish(ActiveProviderChanged(provider=provider_id))
        self._publish_status(provider_id)

    def set_key(self, provider: str, key: str) -> None:
        """Store new key material; validation status is reset synchronously."""

        provider_id = self._normalize(provider)
        entry = self._settings.provider(provider_id)
        entry.api_key = (key or "").strip()
        entry.validated = False
        if entry.api_key:
            entry.enabled = True
        self._generations[provider_id] += 1
        self._save()
        LOGGER.debug(
            "API key for %s changed (generation %d)", provider_id, self._generations[provider_id]
        )
        self._publish_status(provider_id)

    async def validate(self, provider: str | None = None, key: str | None = None) -> bool:
        """Validate the stored key (or ``key``, which is stored first) with the backend.

        Returns True only when this validation was applied and succeeded.
        """

        provider_id = self._normalize(provider or self.active_provider)
        entry = self._settings.provider(provider_id)
        if key is not None and key.strip() != entry.api_key:
            self.set_key(provider_id, key)
        candidate = entry.api_key
        label = display_name(provider_id)
        if not candidate:
            self._notifier.error(f"Please enter an API key for {label}.")
            return False

        generation = self._generations[provider_id]
        self._inflight[provider_id] += 1
        self._publish_status(provider_id)
        try:
            result = await self._backend.validate_credential(provider_id, candidate)
        except Exception as exc:
            if self._is_stale(provider_id, generation):
                LOGGER.debug("Discarding failed validation for outdated %s key", provider_id)
                return False
            entry.validated = False
            self._save()
            self._notifier.error(
                f"Failed to validate {label} API key: {extract_error_message(exc)}"
            )
            return False
        finally:
            self._inflight[provider_id] -= 1
            self._publish_status(provider_id)

        if self._is_stale(provider_id, generation):
            LOGGER.debug("Discarding validation result for outdated %s key", provider_id)
            return False

        if not result.valid:
            entry.validated = False
            self._save()
            detail = result.error or "Please check the key and try again."
            self._notifier.error(f"Invalid API key for {label}. {detail}")
            self._publish_status(provider_id)
            return False

        entry.validated = True
        if (
            result.default_model
            and result.available_models
            and entry.default_model not in result.available_models
        ):
            LOGGER.info(
                "Model %s not offered by %s; using %s",
                entry.default_model,
                provider_id,
                result.default_model,
            )
            entry.default_model = result.default_model
        self._save()
        self._notifier.success(f"{label} API key validated successfully")
        self._publish_status(provider_id)
        return True

    async def finish_editing(self, provider: str | None = None) -> bool:
        """Called when the user leaves the key field; validates an unvalidated key."""

        credential = self.credential(provider)
        if not credential.has_key or credential.validated:
            return credential.validated
        return await self.validate(credential.provider)

    # ------------------------------------------------------------------
    # Send gate
    # ------------------------------------------------------------------

    def require_send_ready(self) -> SendCredentials:
        """Return the active provider's credentials or raise :class:`ValidationError`.

        On failure a notification naming the provider is posted and
        ``SettingsRequested`` is published so the renderer can open settings.
        """

        provider_id = self.active_provider
        entry = self._settings.provider(provider_id)
        label = display_name(provider_id)
        if not entry.api_key.strip():
            self._block(
                provider_id,
                "missing_key",
                f"API key not configured for {label}. Please add your API key in settings.",
            )
        if not entry.validated:
            self._block(
                provider_id,
                "unvalidated_key",
                f"Invalid API key for {label}. Please check your API key in settings.",
            )
        return SendCredentials(
            provider=provider_id,
            api_key=entry.api_key,
            model=entry.default_model,
            max_tokens=entry.max_tokens,
            temperature=entry.temperature,
        )

    def _block(self, provider_id: str, reason: str, message: str) -> None:
        self._notifier.error(message, duration_ms=GATE_DURATION_MS)
        self._bus.publish(SettingsRequested(provider=provider_id, reason=reason))
        raise ValidationError(message, provider=provider_id, reason=reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_stale(self, provider_id: str, generation: int) -> bool:
        return self._generations[provider_id] != generation

    def _save(self) -> None:
        if self._persist is None:
            return
        try:
            self._persist(self._settings)
        except OSError as exc:
            LOGGER.warning("Failed to persist credential settings: %s", exc)

    def _publish_status(self, provider_id: str) -> None:
        self._bus.publish(
            CredentialStatusChanged(
                provider=provider_id,
                credential=self.credential(provider_id),
                validating=self._inflight[provider_id] > 0,
            )
        )

    @staticmethod
    def _normalize(provider: str) -> str:
        return (provider or "").strip().lower()


__all__ = ["CredentialGate"]
