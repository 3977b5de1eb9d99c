"""
LLM Provider Registry.

Manages all provider instances as singletons, keyed by the provider name
stored in the ``llm_providers`` table.
"""

from functools import lru_cache
from typing import Dict

import structlog

from batchguard.infrastructure.llm_providers.base import BaseLLMProvider
from batchguard.infrastructure.llm_providers.gemini_provider import GeminiProvider
from batchguard.infrastructure.llm_providers.openai_provider import OpenAIProvider
from batchguard.infrastructure.llm_providers.perplexity_provider import PerplexityProvider

logger = structlog.get_logger(__name__)


@lru_cache()
def get_provider_registry() -> Dict[str, BaseLLMProvider]:
    """Singleton registry of all LLM providers (configured or not)."""
    providers: Dict[str, BaseLLMProvider] = {
        "openai": OpenAIProvider(),
        "perplexity": PerplexityProvider(),
        "gemini": GeminiProvider(),
    }
    configured = [name for name, p in providers.items() if p.is_configured]
    logger.info("llm_provider_registry_initialized", configured=configured)
    return providers


def get_provider(name: str) -> BaseLLMProvider:
    """Get a specific provider by name. Raises KeyError if unknown."""
    registry = get_provider_registry()
    if name not in registry:
        raise KeyError(f"Unknown LLM provider: {name}. Available: {list(registry.keys())}")
    return registry[name]
