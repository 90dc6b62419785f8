"""Async provider client built around OpenAI-compatible chat endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Sequence

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..ui.models.chat_models import (
    ContentDelta,
    Message,
    MessageStart,
    MessageStop,
    StreamEvent,
    TokenUsage,
)
from .backend_types import ProviderError
from .provider_catalog import provider_info

__all__ = ["ProviderClient", "ProviderClientSettings", "build_chat_messages"]

LOGGER = logging.getLogger(__name__)
_VALIDATION_PROMPT = "Hi"
_VALIDATION_TOKENS = 16
# Providers whose OpenAI-compatible endpoint reports usage when asked via stream_options.
_USAGE_STREAM_PROVIDERS = frozenset({"openai", "openrouter"})
# Providers that reject max_tokens in favour of max_completion_tokens.
_COMPLETION_TOKEN_PROVIDERS = frozenset({"openai"})


@dataclass(slots=True)
class ProviderClientSettings:
    """Subset of settings required to talk to one provider."""

    provider: str
    api_key: str
    base_url: str | None = None
    request_timeout: float | None = 60.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    debug_logging: bool = False


def build_chat_messages(
    history: Sequence[Message],
    *,
    system_prompt: str | None = None,
) -> List[Dict[str, Any]]:
    """Convert a thread timeline into chat-completion messages.

    System messages stored in the thread are skipped; ``system_prompt`` is
    placed first instead. Images become ``image_url`` parts with PNG data URLs.
    """

    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for message in history:
        if message.role == "system":
            continue
        if message.images:
            parts: List[Dict[str, Any]] = [{"type": "text", "text": message.content}]
            for image in message.images:
                parts.append(
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image}"}}
                )
            messages.append({"role": message.role, "content": parts})
        else:
            messages.append({"role": message.role, "content": message.content})
    return messages


class ProviderClient:
    """Streams chat replies from one provider and validates its API key."""

    def __init__(
        self,
        settings: ProviderClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._provider = provider_info(settings.provider).id
        self._client = client or self._build_client(settings)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def settings(self) -> ProviderClientSettings:
        return self._settings

    async def stream_reply(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        model: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one reply as ``message_start``, ``content_delta``* and ``message_stop``.

        Streaming is never retried: a failure after the first delta would
        duplicate text already shown to the user.
        """

        payload = self._build_chat_payload(
            messages=list(messages),
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        LOGGER.debug(
            "Starting streamed reply via %s/%s with %s message(s)",
            self._provider,
            model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        usage: TokenUsage | None = None
        try:
            async with self._client.chat.completions.stream(**payload) as stream:
                yield MessageStart()
                async for event in stream:
                    normalized = self._normalize_stream_event(event)
                    if normalized is not None:
                        yield normalized
                    chunk_usage = self._extract_usage(event)
                    if chunk_usage is not None:
                        usage = chunk_usage
        except (AuthenticationError, PermissionDeniedError) as exc:
            raise ProviderError(f"Invalid API key for {self._provider}: {_status_message(exc)}") from exc
        except APIStatusError as exc:
            raise ProviderError(f"{self._provider} request failed: {_status_message(exc)}") from exc
        except (APIConnectionError, httpx.TimeoutException) as exc:
            raise ProviderError(f"Could not reach {self._provider}: {exc}") from exc
        except APIError as exc:
            raise ProviderError(f"{self._provider} stream failed: {exc}") from exc
        yield MessageStop(usage=usage)

    async def validate(self, *, model: str | None = None) -> bool:
        """Return whether the configured key is accepted by the provider.

        Connection failures and timeouts are retried; an authentication
        failure means the key is invalid. Any other API error is raised as
        :class:`ProviderError`.
        """

        target_model = model or provider_info(self._provider).default_model
        payload = self._build_chat_payload(
            messages=[{"role": "user", "content": _VALIDATION_PROMPT}],
            model=target_model,
            max_tokens=_VALIDATION_TOKENS,
            temperature=None,
        )
        payload.pop("stream_options", None)
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._client.chat.completions.create(**payload)
        except (AuthenticationError, PermissionDeniedError) as exc:
            LOGGER.info("API key rejected by %s: %s", self._provider, _status_message(exc))
            return False
        except APIStatusError as exc:
            raise ProviderError(f"Validation failed: {_status_message(exc)}") from exc
        except (APIConnectionError, httpx.TimeoutException) as exc:
            raise ProviderError(f"Validation failed: could not reach {self._provider}") from exc
        return True

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _build_client(self, settings: ProviderClientSettings) -> AsyncOpenAI:
        base_url = settings.base_url or provider_info(settings.provider).base_url
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type((APIConnectionError, httpx.TimeoutException)),
        )

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[Mapping[str, Any]],
        model: str,
        max_tokens: int | None,
        temperature: float | None,
    ) -> Dict[str, Any]:
        if not messages:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [dict(message) for message in messages],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            token_field = (
                "max_completion_tokens"
                if self._provider in _COMPLETION_TOKEN_PROVIDERS
                else "max_tokens"
            )
            payload[token_field] = max_tokens
        if self._provider in _USAGE_STREAM_PROVIDERS:
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _normalize_stream_event(self, event: Any) -> StreamEvent | None:
        if getattr(event, "type", None) != "content.delta":
            return None
        delta_text = getattr(event, "delta", None)
        if delta_text:
            return ContentDelta(delta=str(delta_text))
        return None

    @staticmethod
    def _extract_usage(event: Any) -> TokenUsage | None:
        if getattr(event, "type", None) != "chunk":
            return None
        chunk = getattr(event, "chunk", None)
        usage = getattr(chunk, "usage", None)
        if usage is None:
            return None
        return TokenUsage(
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Provider payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Provider payload:\n%s", serialized)


def _status_message(exc: APIError) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return str(getattr(exc, "message", None) or exc)
