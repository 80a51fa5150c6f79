"""LLM client contract consumed by the summary pipeline.

The pipeline only needs ``generate``; ``stream`` exists for interactive
callers. Implementations retry transport failures themselves and surface
anything left over as a ``ProviderError`` whose ``retriable`` flag tells
the caller whether trying again later could help.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

# Rough chars-per-token ratio for English/code text.
CHARS_PER_TOKEN_ESTIMATE = 3.5


def estimate_tokens(text: str) -> int:
    return int(len(text) / CHARS_PER_TOKEN_ESTIMATE)


class ProviderError(RuntimeError):
    """Transport-level LLM failure.

    Codes: configuration, authentication, rate_limit, timeout, transient,
    permanent, invalid_response. Only rate_limit, timeout and transient
    are retriable.
    """

    RETRIABLE_CODES = frozenset({"rate_limit", "timeout", "transient"})

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: int | None = None,
        attempt: int = 1,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.attempt = attempt
        self.retriable = code in self.RETRIABLE_CODES


@dataclass(frozen=True)
class ChatMessage:
    role: str                          # "system", "user" or "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerateResult:
    text: str
    model: str
    finish_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class LlmClient(Protocol):
    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerateResult: ...

    def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[str]: ...
