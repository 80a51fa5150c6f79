"""LLM client contract and the OpenAI-compatible provider."""

from explanation_tree.llm.client import (
    ChatMessage,
    GenerateResult,
    LlmClient,
    ProviderError,
)

__all__ = ["ChatMessage", "GenerateResult", "LlmClient", "ProviderError"]
