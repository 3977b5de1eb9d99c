"""
Perplexity provider (OpenAI-compatible chat completions).

Only active if BATCHGUARD_PERPLEXITY_API_KEY is set.
"""

from typing import Optional

from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.llm_providers.openai_provider import OpenAIProvider


class PerplexityProvider(OpenAIProvider):
    base_url = "https://api.perplexity.ai"
    provider_name = "perplexity"

    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None):
        settings = get_settings()
        super().__init__(
            api_key=api_key if api_key is not None else (settings.perplexity_api_key or ""),
            default_model=default_model or settings.perplexity_model,
        )
