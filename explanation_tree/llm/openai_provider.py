"""
OpenAI-compatible chat-completions provider.

Wraps ``openai.AsyncOpenAI`` pointed at any OpenAI-compatible endpoint and
owns the retry policy: the SDK's own retries are disabled so that every
failure is classified here exactly once, retried with exponential backoff
when retriable, and otherwise raised as a ``ProviderError``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
import openai
from openai import AsyncOpenAI

from explanation_tree.config import ModelProviderConfig
from explanation_tree.llm.client import (
    ChatMessage,
    GenerateResult,
    ProviderError,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})
MAX_RETRY_DELAY_S = 10.0


def classify_error(exc: Exception, attempt: int) -> ProviderError:
    """Map an SDK exception onto a ProviderError code."""
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError("timeout", f"Request timed out: {exc}", attempt=attempt)
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError("transient", f"Connection failed: {exc}", attempt=attempt)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status in AUTH_STATUSES:
            code = "authentication"
        elif status == 429:
            code = "rate_limit"
        elif status in RETRYABLE_STATUSES:
            code = "transient"
        else:
            code = "permanent"
        return ProviderError(
            code, f"Provider returned HTTP {status}: {exc.message}",
            status=status, attempt=attempt,
        )
    return ProviderError("invalid_response", f"Unusable provider response: {exc}", attempt=attempt)


class OpenAIProvider:
    """LLM client for OpenAI-compatible chat-completions endpoints."""

    def __init__(
        self,
        config: ModelProviderConfig,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        key = api_key or os.getenv(config.api_key_env_var)
        if not key:
            raise ProviderError(
                "configuration", f"{config.api_key_env_var} is required"
            )
        self._config = config
        self._sleep = sleep
        self._client = AsyncOpenAI(
            api_key=key,
            base_url=config.endpoint,
            timeout=httpx.Timeout(config.timeout_ms / 1000),
            max_retries=0,
            http_client=http_client,
        )

    def _request(
        self,
        messages: list[ChatMessage],
        temperature: float | None,
        max_output_tokens: int | None,
    ) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": (
                self._config.temperature if temperature is None else temperature
            ),
            "max_tokens": (
                self._config.max_output_tokens
                if max_output_tokens is None else max_output_tokens
            ),
        }

    def _backoff_delay(self, attempt: int) -> float:
        delay = self._config.retry_base_delay_ms / 1000 * (2 ** (attempt - 1))
        return min(delay, MAX_RETRY_DELAY_S)

    async def _create_with_retry(self, request: dict[str, Any]) -> Any:
        max_attempts = self._config.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._client.chat.completions.create(**request)
            except openai.APIError as exc:
                error = classify_error(exc, attempt)
                if not error.retriable or attempt == max_attempts:
                    raise error from exc
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "Provider %s error (attempt %d/%d), retrying in %.2fs",
                    error.code, attempt, max_attempts, delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerateResult:
        request = self._request(messages, temperature, max_output_tokens)
        logger.debug(
            "Requesting completion from %s (~%d prompt tokens)",
            self._config.model,
            sum(estimate_tokens(m.content) for m in messages),
        )
        completion = await self._create_with_retry(request)

        choice = completion.choices[0] if completion.choices else None
        text = choice.message.content if choice is not None else None
        if not text:
            raise ProviderError("invalid_response", "Provider returned no completion text")
        logger.debug("Completion finished: %s", choice.finish_reason)
        return GenerateResult(
            text=text,
            model=completion.model or self._config.model,
            finish_reason=choice.finish_reason,
            raw=completion.model_dump(),
        )

    async def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas. Only opening the stream is retried."""
        request = self._request(messages, temperature, max_output_tokens)
        request["stream"] = True
        chunks = await self._create_with_retry(request)
        try:
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as exc:
            raise classify_error(exc, 1) from exc

    async def close(self) -> None:
        await self._client.close()
