"""
OpenAI chat completions provider.

Also the base for OpenAI-compatible APIs (Perplexity). Only active if
BATCHGUARD_OPENAI_API_KEY is set.
"""

from typing import Dict, List, Optional

import httpx
import structlog

from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.llm_providers.base import (
    BaseLLMProvider,
    ProviderNotConfiguredError,
)

logger = structlog.get_logger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI API provider."""

    base_url = "https://api.openai.com/v1"
    provider_name = "openai"

    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None):
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._default_model = default_model or settings.openai_model
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        if not self.is_configured:
            raise ProviderNotConfiguredError(f"{self.name} API key is not set")

        response = await self._client.post(
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json={
                "model": model or self._default_model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"]

    async def aclose(self) -> None:
        await self._client.aclose()
