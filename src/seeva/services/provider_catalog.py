"""Static description of the language-model providers Seeva knows about."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(slots=True, frozen=True)
class ProviderInfo:
    """Defaults and endpoint details for one provider.

    ``base_url`` points at the provider's OpenAI-compatible endpoint; ``None``
    means the OpenAI SDK default.
    """

    id: str
    display_name: str
    default_model: str
    max_tokens: int
    models: tuple[str, ...]
    base_url: str | None = None
    temperature: float = 0.7
    enabled: bool = False


PROVIDERS: Mapping[str, ProviderInfo] = {
    "anthropic": ProviderInfo(
        id="anthropic",
        display_name="Anthropic Claude",
        default_model="claude-sonnet-4-5-20250929",
        max_tokens=64_000,
        models=(
            "claude-sonnet-4-5-20250929",
            "claude-haiku-4-5-20251001",
            "claude-opus-4-1-20250805",
            "claude-sonnet-4-20250514",
            "claude-3-7-sonnet-20250219",
        ),
        base_url="https://api.anthropic.com/v1/",
        enabled=True,
    ),
    "openai": ProviderInfo(
        id="openai",
        display_name="OpenAI",
        default_model="gpt-5-mini",
        max_tokens=32_000,
        models=("gpt-5-mini", "gpt-5-nano"),
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        display_name="OpenRouter",
        default_model="openai/gpt-5.1",
        max_tokens=32_000,
        models=(
            "anthropic/claude-sonnet-4",
            "anthropic/claude-3.7-sonnet",
            "anthropic/claude-3.5-sonnet",
            "anthropic/claude-3.5-haiku",
            "anthropic/claude-opus-4",
            "openai/gpt-5.1",
            "openai/gpt-4o",
            "openai/gpt-4o-mini",
            "openai/gpt-4-turbo",
            "openai/chatgpt-4o-latest",
            "google/gemini-2.5-flash-lite-preview-09-2025",
            "google/gemini-2.0-flash-exp",
            "google/gemini-pro-1.5",
            "google/gemini-flash-1.5",
        ),
        base_url="https://openrouter.ai/api/v1",
    ),
    "gemini": ProviderInfo(
        id="gemini",
        display_name="Google Gemini",
        default_model="gemini-pro",
        max_tokens=32_000,
        models=("gemini-pro", "gemini-1.5-pro", "gemini-1.5-flash"),
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
    ),
}

DEFAULT_PROVIDER = "anthropic"


def provider_info(provider: str) -> ProviderInfo:
    """Return the catalog entry for ``provider`` or raise ``KeyError`` with a readable message."""

    key = (provider or "").strip().lower()
    try:
        return PROVIDERS[key]
    except KeyError:
        raise KeyError(f"Unknown provider: {provider!r}") from None


def display_name(provider: str) -> str:
    info = PROVIDERS.get((provider or "").strip().lower())
    return info.display_name if info is not None else provider


__all__ = ["DEFAULT_PROVIDER", "PROVIDERS", "ProviderInfo", "display_name", "provider_info"]
