"""Streaming completion provider clients."""

from __future__ import annotations

from typing import Any, AsyncIterator, Sequence

import openai
from openai import AsyncOpenAI

from ragdesk.core.config import Settings
from ragdesk.core.errors import ProviderError, ProviderUnavailable
from ragdesk.core.logging import get_logger

logger = get_logger(__name__)

MIN_MAX_TOKENS = 100
MAX_MAX_TOKENS = 4000
DEFAULT_MAX_TOKENS = 2000


def clamp_max_tokens(value: int | None) -> int:
    if value is None:
        return DEFAULT_MAX_TOKENS
    return max(MIN_MAX_TOKENS, min(MAX_MAX_TOKENS, int(value)))


def scale_temperature(value: int | None) -> float:
    """Chatbots store temperature as 0-100; providers expect 0-1."""
    if value is None:
        value = 70
    return max(0, min(100, int(value))) / 100


class CompletionClient:
    """Streaming chat completion interface.

    ``stream`` yields ``{"type": "token", "text": ...}`` events followed by one
    ``{"type": "finish", ...}`` event. Closing the iterator early must release
    the upstream stream.
    """

    def stream(
        self,
        messages: Sequence[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[dict[str, Any]]:  # pragma: no cover - interface
        raise NotImplementedError


class OpenAICompletionClient(CompletionClient):
    """OpenAI-compatible streaming chat completions (OpenRouter by default)."""

    def __init__(self, api_key: str | None, base_url: str | None = None, timeout: float = 60.0) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise ProviderUnavailable("No completion API key configured")
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    async def stream(
        self,
        messages: Sequence[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[dict[str, Any]]:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=list(messages),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc

        usage: dict[str, int] | None = None
        finish_reason: str | None = None
        try:
            async with response:
                async for chunk in response:
                    if chunk.usage is not None:
                        usage = {
                            "prompt_tokens": chunk.usage.prompt_tokens,
                            "completion_tokens": chunk.usage.completion_tokens,
                            "total_tokens": chunk.usage.total_tokens,
                        }
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
                    text = choice.delta.content if choice.delta else None
                    if text:
                        yield {"type": "token", "text": text}
        except openai.OpenAIError as exc:
            raise ProviderError(f"Completion stream failed: {exc}") from exc
        yield {"type": "finish", "finish_reason": finish_reason, "usage": usage, "model": model}


def build_completion_client(settings: Settings) -> CompletionClient:
    return OpenAICompletionClient(
        api_key=settings.completion_api_key,
        base_url=settings.completion_base_url,
        timeout=settings.provider_timeout_seconds,
    )


__all__ = [
    "CompletionClient",
    "OpenAICompletionClient",
    "build_completion_client",
    "clamp_max_tokens",
    "scale_temperature",
]
