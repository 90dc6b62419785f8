"""Provider credential models used by the credential gate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CredentialStatus(Enum):
    """Per-provider credential lifecycle.

    Values:
        UNCONFIGURED: No key material is stored.
        CONFIGURED: A key is stored but has not been validated since it last changed.
        VALIDATED: The stored key passed validation.
    """

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    VALIDATED = "validated"


@dataclass(slots=True, frozen=True)
class ProviderCredential:
    """Read-only view of one provider's credential state.

    The key itself is never part of this view.
    """

    provider: str
    display_name: str
    enabled: bool
    has_key: bool
    validated: bool
    default_model: str
    max_tokens: int

    @property
    def status(self) -> CredentialStatus:
        if not self.has_key:
            return CredentialStatus.UNCONFIGURED
        if not self.validated:
            return CredentialStatus.CONFIGURED
        return CredentialStatus.VALIDATED

    @property
    def ready(self) -> bool:
        return self.status is CredentialStatus.VALIDATED


@dataclass(slots=True, frozen=True)
class CredentialValidation:
    """Result of a backend ``validate_credential`` request."""

    valid: bool
    available_models: tuple[str, ...] = field(default_factory=tuple)
    default_model: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class SendCredentials:
    """Everything a send needs from the gate once it has passed."""

    provider: str
    api_key: str
    model: str
    max_tokens: int
    temperature: float


__all__ = [
    "CredentialStatus",
    "CredentialValidation",
    "ProviderCredential",
    "SendCredentials",
]
