"""
Abstract base class for all LLM providers.

Each answer engine the daily batch queries (OpenAI, Perplexity, Gemini)
implements this interface so the PromptRunner can dispatch to any of them.
"""

from abc import ABC, abstractmethod
from typing import Dict, List


class ProviderNotConfiguredError(RuntimeError):
    """Raised when a provider is dispatched without credentials."""


class BaseLLMProvider(ABC):
    """Abstract base for LLM provider clients."""

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        """Non-streaming chat completion. Returns full response text."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier string (e.g., 'openai', 'gemini')."""

    @property
    def is_configured(self) -> bool:
        """Whether this provider has valid credentials configured."""
        return True

    async def aclose(self) -> None:
        """Release pooled connections."""
